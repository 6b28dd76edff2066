#!/usr/bin/env python3
"""Start the payments API (container entry point)."""
import os

import uvicorn

from app.config import settings

if __name__ == "__main__":
    port = int(os.environ.get("PORT", settings.port))
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
