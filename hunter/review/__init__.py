"""Manual review lifecycle."""

from .service import ManualReviewService

__all__ = ["ManualReviewService"]
