"""
sailsetu/main.py

Purpose: Application entry point

- Initializes FastAPI app
- Loads configuration and logging
- Builds the feature registry, SailPoint gateway and both chat channels
- Registers API routes (bridge webhook, dashboard control)
- Manages application lifecycle (Telegram polling start/stop)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time

from sailsetu.core.config import settings, validate_settings
from sailsetu.core.errors import add_exception_handlers
from sailsetu.core.logging import setup_logging, get_logger
from sailsetu.channels.telegram import TelegramChannel
from sailsetu.channels.whatsapp import WhatsAppChannel
from sailsetu.flow.catalog import build_registry
from sailsetu.services.sailpoint_service import SailPointService, BackendConfigStore
from sailsetu.services.telegram_api import TelegramAPI
from sailsetu.services.whatsapp_bridge import WhatsAppBridgeClient
from sailsetu.api import webhook, bot

# Initialize logging first
setup_logging()
logger = get_logger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Wires the registry, gateway and channels; stops polling on shutdown.
    """
    logger.info("🚀 Starting SailSetu gateway...")

    try:
        logger.info("Validating configuration...")
        validate_settings()
        logger.info("✅ Configuration validated")

        registry = build_registry()
        gateway = SailPointService()
        config_store = BackendConfigStore.from_settings()

        app.state.registry = registry
        app.state.gateway = gateway
        app.state.config_store = config_store

        bridge = None
        app.state.whatsapp = None
        if settings.WHATSAPP_ENABLED:
            bridge = WhatsAppBridgeClient()
            app.state.whatsapp = WhatsAppChannel(registry, gateway, config_store, bridge)
            logger.info(f"✅ WhatsApp channel ready (bridge: {settings.WHATSAPP_BRIDGE_URL})")

        telegram_api = TelegramAPI(token=settings.TELEGRAM_BOT_TOKEN)
        telegram = TelegramChannel(registry, gateway, config_store, telegram_api)
        app.state.telegram = telegram
        telegram.start()
        if not telegram.is_running:
            logger.info("ℹ️ Telegram token not set - polling starts when one is configured")

        logger.info(f"🎉 SailSetu started with {len(registry)} features")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"SailPoint configured: {config_store.current is not None}")

    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise

    yield  # Application runs here

    logger.info("🛑 Shutting down SailSetu gateway...")

    try:
        await telegram.stop()
        await telegram_api.close()
        if bridge is not None:
            await bridge.close()
        await gateway.close()
        logger.info("👋 SailSetu shut down successfully")

    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}", exc_info=True)


app = FastAPI(
    title="SailSetu - Chat Gateway for SailPoint IdentityIQ",
    description="WhatsApp and Telegram conversational access to IdentityIQ workflows",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=settings.DEBUG,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    # Bridge events include the whole dialog turn, so this is mostly SailPoint latency
    if process_time > 5.0:
        logger.warning(
            f"Slow request detected: {request.method} {request.url.path}",
            extra={"process_time": process_time}
        )

    return response


add_exception_handlers(app)

app.include_router(webhook.router, prefix=settings.API_PREFIX, tags=["WhatsApp"])
app.include_router(bot.router, prefix=settings.API_PREFIX, tags=["Bot"])


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - basic info."""
    return {
        "name": "SailSetu API",
        "version": APP_VERSION,
        "description": "Chat gateway for SailPoint IdentityIQ",
        "status": "running",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint.
    Reports channel state and whether SailPoint credentials are present.
    """
    state = request.app.state
    config_store = getattr(state, "config_store", None)
    whatsapp = getattr(state, "whatsapp", None)
    telegram = getattr(state, "telegram", None)

    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "environment": settings.ENVIRONMENT,
        "version": APP_VERSION,
        "checks": {
            "sailpoint": "configured" if config_store and config_store.current else "not_configured",
            "whatsapp": whatsapp.status if whatsapp else "disabled",
            "telegram": "polling" if telegram and telegram.is_running else "stopped",
        }
    }

    if config_store is None:
        health_status["status"] = "starting"
        return JSONResponse(content=health_status, status_code=503)

    return health_status


@app.get("/ready", tags=["Health"])
async def readiness_check(request: Request):
    """
    Readiness probe - the registry and channels are wired.
    """
    if getattr(request.app.state, "registry", None) is None:
        return JSONResponse(status_code=503, content={"status": "not_ready", "reason": "starting"})
    return {"status": "ready"}


@app.get("/live", tags=["Health"])
async def liveness_check():
    """
    Liveness probe - indicates if app is alive.
    """
    return {"status": "alive"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "sailsetu.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
