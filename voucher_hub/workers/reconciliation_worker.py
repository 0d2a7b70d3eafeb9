"""
Reconciliation background worker.

Runs the Pending-transaction poller as a standalone process, for deployments
where the API runs with ``RUN_SCHEDULER_IN_API=false``.
"""
import asyncio
import signal
from typing import Optional

import structlog

from voucher_hub.config import Settings, get_settings
from voucher_hub.database.connection import init_db
from voucher_hub.monitoring.logging import setup_logging
from voucher_hub.services import build_services

logger = structlog.get_logger(__name__)


async def start_reconciliation_worker(settings: Optional[Settings] = None) -> None:
    """
    Start the reconciliation worker and run until SIGINT/SIGTERM.

    In-flight attempts are allowed to finish before the process exits.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    logger.info(
        "reconciliation_worker_starting",
        interval=settings.reconciliation_interval_seconds,
        shared_leases=bool(settings.redis_url),
    )

    services = build_services(settings)
    await init_db(services.db_engine)

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("reconciliation_worker_shutdown_signal_received", signal=sig.name)
        stop_requested.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        services.scheduler.start()
        await stop_requested.wait()
    except Exception as e:
        logger.error("reconciliation_worker_error", error=str(e))
        raise
    finally:
        await services.close()
        logger.info("reconciliation_worker_stopped")


def main() -> None:
    asyncio.run(start_reconciliation_worker())


if __name__ == "__main__":
    main()
