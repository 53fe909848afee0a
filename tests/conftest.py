"""
Root test configuration.

Async code is driven with asyncio.run from plain test functions; every
test that touches the store gets its own SQLite file under tmp_path.
"""

import asyncio
import os
import tempfile
from pathlib import Path

# Keep test logs out of the user's log directory
os.environ.setdefault("HUNTER_LOG_FILE", str(Path(tempfile.gettempdir()) / "hunter-tests.log"))

import pytest

from hunter.storage import PipelineDatabase


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "hunter-test.db"


@pytest.fixture
def with_db(db_path):
    """
    Run an async scenario against a connected database.

    Usage:
        def test_something(with_db):
            async def scenario(db):
                ...
            result = with_db(scenario)
    """
    def run(scenario):
        async def main():
            db = PipelineDatabase(db_path)
            await db.connect()
            try:
                return await scenario(db)
            finally:
                await db.close()

        return asyncio.run(main())

    return run
