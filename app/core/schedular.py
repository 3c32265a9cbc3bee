import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.database import SessionLocal, get_engine
from app.services.subscription_ledger import SubscriptionLedger

logger = logging.getLogger(__name__)


def expire_lapsed_subscriptions():
    """
    Scheduled task: mark free and one-time subscriptions whose access period
    has ended as expired. Entitlement rows are not touched; they simply stop
    being active.
    """
    get_engine()
    db = SessionLocal()
    try:
        count = SubscriptionLedger(db).expire_lapsed()
        db.commit()
        logger.info(
            f"[{datetime.now(timezone.utc)}] Expiry sweep completed. "
            f"Marked {count} subscriptions as expired."
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Error during expiry sweep: {e}")
    finally:
        db.close()


def start_scheduler():
    """
    Initialize and start the APScheduler for the expiry sweep.
    """
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        expire_lapsed_subscriptions,
        trigger=IntervalTrigger(minutes=settings.expiry_sweep_interval_minutes),
        id="subscription_expiry_sweep",
        name="Expire lapsed subscriptions",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        f"Subscription scheduler started. Expiry sweep every "
        f"{settings.expiry_sweep_interval_minutes} minutes."
    )

    return scheduler


def shutdown_scheduler(scheduler: AsyncIOScheduler):
    """
    Gracefully shutdown the scheduler.
    """
    if scheduler:
        scheduler.shutdown()
        logger.info("Subscription scheduler shut down.")
