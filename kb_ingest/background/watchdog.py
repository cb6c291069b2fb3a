import asyncio
import logging

from kb_ingest.services.job_processor import JobProcessor

logger = logging.getLogger(__name__)


def run_watchdog_once(processor: JobProcessor, threshold_seconds: int) -> int:
    """
    Scans for jobs that stopped reporting and marks them failed.
    Returns the number of jobs marked.
    """
    logger.info("Watchdog started: Scanning for stuck jobs.")
    try:
        failed_jobs = processor.fail_stuck_jobs(threshold_seconds)
    except Exception as e:
        logger.error(f"Watchdog encountered an unhandled exception: {e}", exc_info=True)
        return 0

    if not failed_jobs:
        logger.info("Watchdog found no stuck jobs.")
    for job in failed_jobs:
        logger.warning(f"Watchdog marked job {job.id} as '{job.status.value}' due to inactivity.")
    return len(failed_jobs)


async def watchdog_loop(processor: JobProcessor, interval_seconds: int, threshold_seconds: int):
    """Runs the stuck job scan every `interval_seconds` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        run_watchdog_once(processor, threshold_seconds)
