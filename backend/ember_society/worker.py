import asyncio
import logging

from ember_society.core.database import engine, init_db
from ember_society.services.event_reminder_service import EventReminderService, EventReminderScheduler
from ember_society.services.notification_service import get_dispatcher
from ember_society.utils.logger import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


async def main_async():
    """Run the event reminder sweep outside the API process (set RUN_EVENT_REMINDERS=false on the API)."""
    logger.info("Initializing Worker...")

    await init_db()

    scheduler = EventReminderScheduler(EventReminderService(get_dispatcher()))
    scheduler.start()
    logger.info("Worker started. Press Ctrl+C to exit.")

    # Keep alive
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        scheduler.stop()
        await engine.dispose()


def main():
    try:
        asyncio.run(main_async())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Worker stopped.")


if __name__ == "__main__":
    main()
