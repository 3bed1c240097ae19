# main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.entry.http.views.transfer_manager_view import install_error_handlers
from adapters.entry.http.views.transfer_manager_view import router as transfer_manager_router
from config import get_settings


def create_app() -> FastAPI:
    """
    Application factory for the DVA operator API.

    Every request builds its own ChainConfig from the environment, so the
    app holds no chain state between requests.
    """
    s = get_settings()
    logging.basicConfig(
        level=s.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="T-REX DVA Operator API",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(app)
    app.include_router(transfer_manager_router, prefix="/api")

    return app


app = create_app()
