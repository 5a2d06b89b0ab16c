"""Routers mounted by quizsync.main."""

from quizsync.api.health import router as health_router  # noqa: F401
from quizsync.api.users import router as users_router  # noqa: F401
from quizsync.api.progress import router as progress_router  # noqa: F401
from quizsync.api.sync import router as sync_router  # noqa: F401
