"""
OTO Shipment Engine - FastAPI Backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import status
import uvicorn
import logging

from routes.api import register_routes
from shipment_engine.database import engine, Base, SessionLocal
from shipment_engine.config import settings
from shipment_engine.errors import ShippingError
from shipment_engine import models  # noqa: F401  (registers tables on Base.metadata)
from shipment_engine.services.credential_manager import DatabaseTokenStore, build_credential_manager
from shipment_engine.services.oto_client import OTOClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Create database tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="OTO Shipment Engine API",
    description="Carrier integration and shipment reconciliation for OTO",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,  # Disable docs in production
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

# Log startup information
logger.info("🚀 Starting OTO Shipment Engine")
logger.info("📊 Environment: %s", settings.ENV)
logger.info("🌐 Production: %s", settings.IS_PRODUCTION)
logger.info("🔗 Host: %s:%s", settings.HOST, settings.PORT)
logger.info("🚚 OTO base URL: %s", settings.OTO_BASE_URL)

if not settings.OTO_WEBHOOK_SECRET:
    logger.warning("⚠️ OTO_WEBHOOK_SECRET is not set. Every OTO webhook will be rejected with 401.")

# One credential manager per process so the refresh lock and rotated tokens are shared
token_store = DatabaseTokenStore(SessionLocal) if settings.OTO_PERSIST_CREDENTIALS else None
app.state.credential_manager = build_credential_manager(token_store=token_store)
app.state.oto_client = OTOClient(app.state.credential_manager)


def get_cors_headers(request: Request) -> dict:
    """Get CORS headers for a request"""
    origin = request.headers.get("origin", "")
    allowed_origins = settings.ALLOWED_ORIGINS

    if origin in allowed_origins:
        cors_origin = origin
    elif allowed_origins:
        cors_origin = allowed_origins[0]
    else:
        cors_origin = "*"

    return {
        "Access-Control-Allow-Origin": cors_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "GET, POST, PUT, PATCH, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "*",
    }


@app.exception_handler(ShippingError)
async def shipping_error_handler(request: Request, exc: ShippingError):
    """Render engine errors as {"error": {...}} with the status the error carries"""
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=get_cors_headers(request)
    )


# Add exception handler for validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Validation error: %s", exc.errors())
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": jsonable_errors(exc),
            "message": "Validation error: Please check your request format"
        },
        headers=get_cors_headers(request)
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]


# Add exception handler for HTTPException to ensure CORS headers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTPException and ensure CORS headers are sent"""
    headers = get_cors_headers(request)
    if exc.headers:
        headers.update(exc.headers)

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers
    )


# Add global exception handler to ensure CORS headers are always sent
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to ensure CORS headers are always sent"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred"
        },
        headers=get_cors_headers(request)
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

logger.info("✅ CORS configured for %s origin(s)", len(settings.ALLOWED_ORIGINS))

# Register all API routes (prefix /api)
register_routes(app, settings)


@app.get("/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        from sqlalchemy import text
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": "shipment-engine",
        "db": db_status,
        "environment": settings.ENV,
        "otoConfigured": settings.oto_configured,
    }


@app.get("/")
async def root():
    return {"message": "OTO Shipment Engine API", "version": "1.0.0"}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,
    )
