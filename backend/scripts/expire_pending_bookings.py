"""
Expire pending bookings whose provider response deadline has passed.

Each expired booking has its payment hold released first. Bookings whose
refund fails stay pending and are retried on the next run. Meant to run
from cron every few minutes.

Usage:
    python -m scripts.expire_pending_bookings
"""

import logging
from pathlib import Path
import sys

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import settings
from app.database import session_scope
from app.services.booking_service import BookingService

logger = logging.getLogger("scripts.expire_pending_bookings")


def main() -> int:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    with session_scope() as db:
        expired = BookingService(db).expire_pending_bookings()

    logger.info("expire_pending_bookings_finished", extra={"expired_count": expired})
    print(f"Expired {expired} pending bookings")
    return 0


if __name__ == "__main__":
    sys.exit(main())
