"""
Main FastAPI application entry point.

Builds the ledger, pricing, delivery and checkout services, starts one monitor
per configured chain plus the expiry sweep, and mounts the checkout API and
health check endpoint.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from .env file
load_dotenv()

from paywatch.chains.evm import EvmChainClient
from paywatch.chains.networks import EvmNetworkConfig, SolanaNetworkConfig
from paywatch.chains.solana import SolanaChainClient
from paywatch.checkout import CheckoutService
from paywatch.config import Settings
from paywatch.delivery import EmailDelivery, LogDelivery
from paywatch.errors import ConfigurationError
from paywatch.ledger.database import Database
from paywatch.ledger.expiry import ExpirySweeper
from paywatch.ledger.store import PaymentLedger
from paywatch.monitors.evm import EvmChainMonitor
from paywatch.monitors.solana import SolanaChainMonitor
from paywatch.pricing import PriceOracle
from paywatch.reconciliation import Reconciler
from paywatch.routes import router as payment_router
from paywatch.tasks import PeriodicTask
from paywatch.wallet.allocator import AddressAllocator

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_PORT = 8000
API_VERSION = "0.1.0"
SERVICE_NAME = "paywatch"

# Environment variable keys
ENV_PORT = "PORT"


def build_deliverer(settings: Settings):
    if settings.smtp_host:
        return EmailDelivery(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_pass,
            site_url=settings.site_url,
            sender=settings.mail_from or None,
        )
    logger.warning("SMTP_HOST not set; download links will only be logged")
    return LogDelivery(settings.site_url)


def build_monitors(
    settings: Settings,
    ledger: PaymentLedger,
    reconciler: Reconciler,
) -> Tuple[List[PeriodicTask], Dict[str, EvmNetworkConfig], Optional[SolanaNetworkConfig]]:
    """Build one monitor per configured chain.

    A chain whose configuration is invalid is logged and skipped; the others
    still start.

    Returns:
        (monitors, monitored EVM networks by name, Solana network or None)
    """
    tolerance = settings.tolerance_policy()
    monitors: List[PeriodicTask] = []
    evm_networks: Dict[str, EvmNetworkConfig] = {}

    for name in settings.enabled_evm_chains():
        try:
            network = settings.evm_network(name)
        except ConfigurationError as e:
            logger.error(f"Skipping EVM monitor '{name}': {e}")
            continue
        client = EvmChainClient(network, timeout=settings.rpc_timeout_seconds)
        monitors.append(
            EvmChainMonitor(
                network,
                client,
                ledger,
                reconciler,
                tolerance=tolerance,
                interval=settings.poll_interval_seconds,
                native_scan_window=settings.native_scan_window,
            )
        )
        evm_networks[network.name] = network

    solana_network: Optional[SolanaNetworkConfig] = None
    if settings.solana_enabled:
        try:
            solana_network = settings.solana_network()
        except ConfigurationError as e:
            logger.error(f"Skipping Solana monitor: {e}")
        else:
            client = SolanaChainClient(solana_network.rpc_url, timeout=settings.rpc_timeout_seconds)
            monitors.append(
                SolanaChainMonitor(
                    solana_network,
                    client,
                    ledger,
                    reconciler,
                    tolerance=tolerance,
                    interval=settings.poll_interval_seconds,
                    page_size=settings.solana_signature_page_size,
                )
            )

    return monitors, evm_networks, solana_network


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    db = Database(settings.database_url)
    db.init_schema()
    ledger = PaymentLedger(db)
    ledger.load_catalog(settings.catalog_path)

    oracle = PriceOracle(
        url=settings.coingecko_url,
        cache_ttl=settings.price_cache_ttl_seconds,
        max_age=settings.price_max_age_seconds,
    )
    reconciler = Reconciler(ledger, build_deliverer(settings))
    monitors, evm_networks, solana_network = build_monitors(settings, ledger, reconciler)
    sweeper = ExpirySweeper(
        ledger,
        timeout=timedelta(minutes=settings.payment_timeout_minutes),
        interval=settings.expiry_sweep_interval_seconds,
    )

    app.state.db = db
    app.state.ledger = ledger
    app.state.checkout = CheckoutService(
        ledger,
        AddressAllocator(db, settings.xpub),
        oracle,
        evm_networks,
        solana_network,
    )
    app.state.tasks = [*monitors, sweeper]

    started: List[PeriodicTask] = []
    if app.state.run_tasks:
        for task in app.state.tasks:
            await task.start()
            started.append(task)
        logger.info(f"Started {len(monitors)} monitor(s): {[m.name for m in monitors]}")

    try:
        yield
    finally:
        for task in started:
            await task.stop()
        db.dispose()


def create_app(settings: Optional[Settings] = None, run_tasks: bool = True) -> FastAPI:
    """Create and configure the main FastAPI application.

    Args:
        settings: Runtime settings; read from the environment when omitted
        run_tasks: Start monitors and the expiry sweep with the app

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Paywatch API",
        description="Non-custodial crypto payment reconciliation",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()
    app.state.run_tasks = run_tasks
    app.state.tasks = []

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check(request: Request) -> JSONResponse:
        """Health check endpoint with per-monitor state."""
        return JSONResponse(
            content={
                "status": "healthy",
                "service": SERVICE_NAME,
                "version": API_VERSION,
                "tasks": {task.name: task.state.value for task in request.app.state.tasks},
            }
        )

    app.include_router(payment_router)
    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv(ENV_PORT, str(DEFAULT_PORT)))
    uvicorn.run(app, host="0.0.0.0", port=port)
