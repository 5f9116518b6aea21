"""
ASGI entry point for the transcoder service.

    uvicorn server.asgi:app --app-dir backend

or run this module directly for a local single-worker server.
"""

import os

from dotenv import load_dotenv

load_dotenv()

import uvicorn  # pylint: disable=wrong-import-position

from server.app import create_app  # pylint: disable=wrong-import-position

app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "8000")),
        log_level="warning",
    )
