"""arq worker runner.

Run with: python -m invoice_recon.queue.worker
Or: arq invoice_recon.queue.tasks.WorkerSettings
"""

import logging

from arq import run_worker

from invoice_recon.queue.tasks import WorkerSettings
from invoice_recon.shared.config import get_settings


def main() -> None:
    """Run the arq worker."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger = logging.getLogger(__name__)

    logger.info(f"Starting worker with Redis: {settings.redis_url}")
    logger.info(f"Max jobs: {settings.queue_max_jobs}")
    logger.info(f"Job timeout: {settings.queue_job_timeout}s")

    # Update worker settings from config
    WorkerSettings.redis_settings = WorkerSettings.get_redis_settings()  # type: ignore
    WorkerSettings.max_jobs = settings.queue_max_jobs
    WorkerSettings.job_timeout = settings.queue_job_timeout

    run_worker(WorkerSettings)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
