"""Run the API server: ``python -m quizsync``."""

import uvicorn

from quizsync.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "quizsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
