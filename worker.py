"""
DoseReminder Worker
Runs the reminder scheduler without the HTTP API
"""

import asyncio
import logging
import signal

from config import settings
from database import init_db
from actions.reminder_scheduler import ReminderScheduler

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


async def run_worker():
    """Start the scheduler and block until SIGINT or SIGTERM"""
    init_db()

    scheduler = ReminderScheduler()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    scheduler.start()
    logger.info(f"{settings.APP_NAME} worker running, waiting for signals")

    # Fill any gaps left while the worker was down
    await scheduler.run_task("schedules")

    await stop_event.wait()
    logger.info("Shutdown signal received")
    scheduler.stop()


if __name__ == "__main__":
    asyncio.run(run_worker())
