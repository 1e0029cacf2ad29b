"""
Central API route registration. All HTTP controllers are mounted here with the /api prefix.
"""
import logging
from fastapi import FastAPI

from shipment_engine.http.controllers import oto

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    prefix = settings.API_PREFIX.rstrip("/")
    app.include_router(oto.router, prefix=f"{prefix}/oto", tags=["oto"])
    if not settings.oto_configured:
        logger.warning("⚠️ OTO credentials not configured: set OTO_API_KEY or OTO_REFRESH_TOKEN")
