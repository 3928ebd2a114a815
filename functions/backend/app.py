"""
FastAPI application entry point for the SEO automation backend.
"""

from __future__ import annotations

from fastapi import FastAPI

from backend.config import get_settings
from backend.errors import register_error_handlers
from backend.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="SEO Automation Backend (FastAPI)", version="0.1.0")
    register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
