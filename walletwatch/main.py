from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import health, wallets
from .config import settings
from .logging_config import setup_logging
from .services.monitoring import get_wallet_monitor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    monitor = None
    if settings.monitor_autostart:
        monitor = get_wallet_monitor()
        await monitor.start()
    else:
        logger.info("Wallet monitor autostart disabled")
    try:
        yield
    finally:
        if monitor is not None:
            await monitor.close()


# Create FastAPI app
app = FastAPI(
    title="Wallet Watch API",
    description="Solana wallet activity monitor",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(wallets.router)


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Wallet Watch API",
        "version": __version__,
        "network": settings.solana_network,
        "docs": "/docs",
        "health": "/healthz",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "walletwatch.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
