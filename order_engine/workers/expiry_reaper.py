"""
Expiry reaper background worker.

Periodically deletes pending gateway orders whose payment window has passed. Order
correctness never depends on this worker; initiation and verification reject expired
orders on their own.
"""
import argparse
import asyncio
import signal
from datetime import timedelta
from typing import Any, Optional

import structlog

from ..config import Settings, get_settings
from ..core.errors import StoreError
from ..core.expiry import ExpiryPolicy
from ..core.store import OrderStore
from ..database.connection import Database
from ..database.store import SqlOrderStore
from ..monitoring.logging import setup_logging
from ..monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ExpiryReaper:
    """Purges expired pending gateway orders every ``interval_seconds``."""

    def __init__(self, store: OrderStore, expiry: ExpiryPolicy, interval_seconds: float = 60.0):
        self.store = store
        self.expiry = expiry
        self.interval_seconds = interval_seconds
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run_once(self) -> int:
        """One purge pass. Returns the number of orders removed."""
        cutoff = self.expiry.cutoff()
        purged = await self.store.purge_expired(cutoff)
        metrics.record_reaper_pass(purged)
        logger.info("expiry_reaper_pass_completed", purged=purged, cutoff=cutoff.isoformat())
        return purged

    async def run(self) -> None:
        """Loop until ``stop`` is called. Store failures are logged and retried next pass."""
        logger.info("expiry_reaper_started", interval_seconds=self.interval_seconds)
        try:
            while not self.stopped:
                try:
                    await self.run_once()
                except StoreError as e:
                    logger.error("expiry_reaper_pass_failed", error=e.message)

                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info("expiry_reaper_stopped")


async def start_expiry_reaper(settings: Optional[Settings] = None, once: bool = False) -> None:
    """
    Start the expiry reaper against the configured database.

    Args:
        settings: Application settings (loaded from the environment when omitted)
        once: Run a single pass and exit
    """
    settings = settings or get_settings()
    setup_logging(settings)

    database = Database.from_settings(settings)
    await database.connect()
    reaper = ExpiryReaper(
        SqlOrderStore(database),
        ExpiryPolicy(timedelta(minutes=settings.order_expiry_minutes)),
        interval_seconds=settings.reaper_interval_seconds,
    )

    def signal_handler(sig: int, frame: Any) -> None:
        logger.info("expiry_reaper_shutdown_signal_received", signal=sig)
        reaper.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        if once:
            await reaper.run_once()
        else:
            await reaper.run()
    finally:
        await database.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Expired order reaper")
    parser.add_argument("--once", action="store_true", help="Run a single purge pass and exit")
    args = parser.parse_args()

    asyncio.run(start_expiry_reaper(once=args.once))


if __name__ == "__main__":
    main()
