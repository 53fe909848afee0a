"""
FastAPI server for Opportunity Hunter.

Document intake, HTTP-triggered decisions, the manual review queue and
the corrections dataset.
"""
import time
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from .env file
dotenv_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=dotenv_path)

from api.db import close_db, get_pipeline
from api.models import HealthResponse
from api.routes import pipeline as pipeline_routes
from api.routes import review as review_routes
from hunter.logging_config import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

VERSION = "0.1.0"

# Server state
START_TIME = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("API server starting")
    # Subscribes the stage handlers and starts the join sweeper
    await get_pipeline()

    yield
    logger.info("API server shutting down")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title="Opportunity Hunter API",
    description="Opportunity extraction, verification and manual review",
    version=VERSION,
    lifespan=lifespan
)

# Configure CORS - allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when allow_origins is ["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(pipeline_routes.router)
app.include_router(review_routes.router)


@app.get("/", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version=VERSION,
        uptime=time.time() - START_TIME
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler."""
    logger.error("Unhandled error: %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    print("=" * 60)
    print("Opportunity Hunter API Server")
    print("=" * 60)
    print("Server: http://localhost:8080")
    print("Docs: http://localhost:8080/docs")
    print("=" * 60)

    uvicorn.run(app, host="0.0.0.0", port=8080)
