"""Command line entry point: run the queue consumers and, optionally, the admin API."""
import asyncio
import logging
import signal
import sys
from typing import List, Optional

import uvicorn

from api import create_app
from config import SettingsError, load_settings
from consumers import ConsumerGroup, create_consumer_group
from database import close as db_close, create_store, init_db
from jobs import JobQueue, create_job_queue

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
should_exit = False

def handle_shutdown(signum, frame):
    """Handle shutdown signals gracefully."""
    global should_exit
    logger.info("Shutdown signal received. Cleaning up...")
    should_exit = True

class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app, host: str = "0.0.0.0", port: int = 8000):
        self.config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info"
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        await self.server.serve()

    async def stop(self):
        self.server.should_exit = True

async def main(settings_path: str = ".") -> int:
    """Run the consumers until a shutdown signal arrives."""
    global should_exit

    try:
        settings = load_settings(settings_path)
    except SettingsError as e:
        logger.error(str(e))
        return 1

    logging.getLogger().setLevel(settings.log_level.upper())

    consumers: Optional[ConsumerGroup] = None
    job_queue: Optional[JobQueue] = None
    server: Optional[UvicornServer] = None
    tasks: List[asyncio.Task] = []

    try:
        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

        pool = None
        if not settings.uses_memory_backend:
            logger.info("Initializing database...")
            pool = await init_db(settings.db_url)

        store = create_store(settings, pool)
        job_queue = create_job_queue(settings, pool)
        consumers = create_consumer_group(settings, store, job_queue)

        tasks.append(asyncio.create_task(consumers.start(), name="consumers"))
        if settings.api_enabled:
            server = UvicornServer(create_app(job_queue), settings.api_host, settings.api_port)
            tasks.append(asyncio.create_task(server.run(), name="api"))

        logger.info(
            f"Started {len(consumers.consumers)} consumers"
            + (f", admin API on {settings.api_host}:{settings.api_port}" if server else "")
        )

        # Wait for shutdown signal
        while not should_exit:
            await asyncio.sleep(1)

            for task in tasks:
                if task.done():
                    if not task.cancelled() and task.exception():
                        logger.error(f"Task {task.get_name()} failed with error: {task.exception()}")
                    else:
                        logger.info(f"Task {task.get_name()} exited")
                    should_exit = True

        logger.info("Starting cleanup...")
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1

    finally:
        if consumers:
            consumers.stop()

        if server:
            logger.info("Stopping API server...")
            await server.stop()

        for task in tasks:
            if not task.done():
                try:
                    await asyncio.wait_for(task, timeout=10)
                except asyncio.TimeoutError:
                    logger.warning(f"Task {task.get_name()} did not stop in time")
                except Exception as e:
                    logger.error(f"Task {task.get_name()} failed during shutdown: {e}")

        if job_queue:
            await job_queue.close()

        logger.info("Closing database connections...")
        await db_close()

        logger.info("Cleanup complete.")

def run():
    """Console script entry point; takes the settings directory as an optional argument."""
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else ".")))

if __name__ == "__main__":
    run()
