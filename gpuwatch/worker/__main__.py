"""Worker-only process: `python -m gpuwatch.worker`."""

import asyncio
import logging
import signal

from gpuwatch.config import settings
from gpuwatch.db.session import Database
from gpuwatch.logging_config import setup_logging
from gpuwatch.queue.redis_queue import RedisJobQueue
from gpuwatch.worker.tasks import TaskRunner

logger = logging.getLogger("gpuwatch.worker")


async def main() -> None:
    setup_logging()
    logger.info("Starting GPUWatch worker...")

    db = Database()
    queue = RedisJobQueue()
    runner = TaskRunner(db, queue)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    runner.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown signal received, draining workers")
    finally:
        await runner.stop(settings.shutdown_grace_seconds)
        await queue.close()
        await db.close()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
