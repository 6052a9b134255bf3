from unittest.mock import AsyncMock, patch

import pytest

import common.db.session as db_session
from api.main import app, lifespan


@pytest.mark.asyncio
class TestLifespan:
    """Startup and shutdown hooks of the API app."""

    async def test_startup_leaves_schema_to_migrations(self, lock_provider):
        with patch.object(lock_provider, "disconnect", new=AsyncMock()) as disconnect:
            async with lifespan(app):
                pass

        disconnect.assert_awaited_once()
        assert not hasattr(db_session, "init_db")
