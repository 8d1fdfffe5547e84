#!/usr/bin/env python3
"""
Job driver - advances the analysis job from a long-running process.

Each tick takes over a stale job, runs batches while the job is running,
executes due scheduled tasks and then sleeps. The API and this driver can run
at the same time; batches are single-flight through the job lease.
"""

import argparse
import logging
import signal
import sys
import time
from datetime import date

from dotenv import load_dotenv

from shop_agent.config import settings
from shop_agent.core.exceptions import ShopAgentException
from shop_agent.core.logging_config import get_logger, setup_logging
from shop_agent.database import create_db_and_tables
from shop_agent.dependencies import get_job_manager, get_retention_service, get_task_service

logger = get_logger(__name__)

MAX_BATCHES_PER_TICK = 50


class JobDriver:

    def __init__(self, poll_interval: float = None, max_batches: int = MAX_BATCHES_PER_TICK):
        self.running = True
        self.poll_interval = poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        self.max_batches = max_batches
        self.last_cleanup = None
        self._setup_signal_handlers()

    def _setup_signal_handlers(self):
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, shutting down gracefully...")
            self.running = False

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def tick(self) -> dict:
        """One pass of the loop. Returns counters for logging and tests."""
        summary = {"batches": 0, "tasks": 0, "cleaned": 0}
        try:
            manager = get_job_manager()
        except ShopAgentException as e:
            # Usually an invalid LLM configuration; retried next tick
            logger.error("Job manager unavailable", error_code=e.error_code, error=e.message)
            manager = None

        if manager is not None:
            manager.resume_stale_job()
            summary["batches"] = self._drive(manager)

        tasks = get_task_service().run_due_tasks()
        summary["tasks"] = tasks["executed"] + tasks["failed"]

        today = date.today()
        if self.last_cleanup != today:
            # Once per day
            summary["cleaned"] = sum(get_retention_service().cleanup().values())
            self.last_cleanup = today
        return summary

    def _drive(self, manager) -> int:
        """Process batches until the job stops running. Returns the number of batches that made progress."""
        current = manager.get_job_progress()
        if not current.success or current.data["status"] not in ("running", "cancelling"):
            return 0

        batches = 0
        done = None
        while self.running and batches < self.max_batches:
            result = manager.process_next_batch()
            if not result.success:
                logger.warning("Batch failed", error_code=result.error_code, error=result.message)
                break
            progress = result.data or {}
            analyzed = progress.get("products_analyzed", 0) + progress.get("customers_analyzed", 0)
            if progress.get("status") == "running" and analyzed == done:
                # Another process holds the batch lease
                break
            done = analyzed
            batches += 1
            if progress.get("status") != "running":
                break
        return batches

    def start(self):
        logger.info("Job driver started", poll_interval=self.poll_interval)
        while self.running:
            try:
                summary = self.tick()
                if any(summary.values()):
                    logger.info("Driver tick", **summary)
            except ShopAgentException as e:
                logger.error("Driver tick failed", error_code=e.error_code, error=e.message)
            self._sleep()
        logger.info("Job driver stopped")

    def _sleep(self):
        # Sleep in short steps so a signal stops the driver promptly
        deadline = time.monotonic() + self.poll_interval
        while self.running and time.monotonic() < deadline:
            time.sleep(min(0.5, max(0.0, deadline - time.monotonic())))

    def stop(self):
        self.running = False
        logger.info("Driver stop requested")


def main():
    parser = argparse.ArgumentParser(description="Shop agent job driver")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--once", action="store_true", help="Run a single tick and exit")
    args = parser.parse_args()

    load_dotenv()
    setup_logging(log_level=settings.log_level, log_format=settings.log_format, log_file=settings.log_file)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    create_db_and_tables()
    driver = JobDriver()
    try:
        if args.once:
            logger.info("Single tick", **driver.tick())
        else:
            driver.start()
    except KeyboardInterrupt:
        logger.info("Driver interrupted by user")
    except Exception as e:
        logger.exception(f"Driver failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
