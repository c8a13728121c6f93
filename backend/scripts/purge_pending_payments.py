"""Remove wallet pending payments whose browser never came back.

A record older than ``PENDING_PAYMENT_TTL_MINUTES`` can no longer be
reconciled; the callback reports it as unconfirmed. This script clears those
rows. Schedule it (cron, k8s CronJob) alongside the service.

Run inside Docker:
    docker compose exec backend python -m scripts.purge_pending_payments
"""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add backend to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from homestay_checkout.config import settings
from homestay_checkout.database import async_session_factory, engine
from homestay_checkout.models.pending_payment import utcnow
from homestay_checkout.services.pending_payment_service import purge_expired_pending_payments


async def purge() -> int:
    """Delete every pending payment older than the configured TTL."""
    cutoff = utcnow() - timedelta(minutes=settings.pending_payment_ttl_minutes)
    async with async_session_factory() as session:
        removed = await purge_expired_pending_payments(session, cutoff)

    print(f"Removed {removed} pending payments created before {cutoff.isoformat()} UTC")
    await engine.dispose()
    return removed


if __name__ == "__main__":
    asyncio.run(purge())
