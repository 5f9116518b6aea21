"""
FastAPI app factory for the transcoder service.

The app holds two pieces of shared state: the AppConfig and the
collaborators factory that builds fresh engines and an uploader per run.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability import logger
from services.collaborators import CollaboratorsFactory, default_collaborators_factory

from server.routes import register_routes


def create_app(
    config: Optional[AppConfig] = None,
    *,
    collaborators_factory: Optional[CollaboratorsFactory] = None,
) -> FastAPI:
    """
    Build the app.

    Tests pass a fixed config and a fake collaborators factory; the ASGI
    entry point passes neither and gets the environment config with the
    PyAV / httpx collaborators.
    """
    config = config or AppConfig.load_from_env()
    logger.configure(level=config.log_level)

    app = FastAPI(title="Preview Transcoder API")

    app.state.config = config

    # Browser clients upload from a different origin than the API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # One factory per process; it builds fresh collaborators per run
    app.state.collaborators_factory = (
        collaborators_factory or default_collaborators_factory(config)
    )

    # Routes
    register_routes(app)

    return app
