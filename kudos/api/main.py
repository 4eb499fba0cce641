"""ASGI entry point.

    uvicorn kudos.api.main:app
"""

import uvicorn

from kudos.api.app import create_app
from kudos.config import get_settings

# Create the app instance for uvicorn
app = create_app()


def run() -> None:
    """Serve the API on the configured host and port."""
    settings = get_settings()
    uvicorn.run(app, host=settings.api.host, port=settings.api.port, log_config=None)
