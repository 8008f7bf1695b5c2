"""
Design pipeline worker.

Polls the job store for pending designs and runs them through the six
stages. Start several of these against a shared database; claims are
atomic so each job runs exactly once.
"""

import logging
import signal
import time

from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from design_pipeline.config import Config, get_config
from design_pipeline.errors import JobConflictError
from design_pipeline.store import JobStore, build_engine, build_notifier
from design_pipeline.worker.runner import PipelineRunner
from design_pipeline.worker.stage_loader import StageCatalog
from design_pipeline.worker.stages import build_default_stages

# Load env vars
load_dotenv()

console = Console()
logger = logging.getLogger("worker")

STUCK_JOB_MESSAGE = "Worker restarted before the design finished"


def fail_stuck_jobs(store: JobStore) -> int:
    """
    Fail jobs left processing by a worker that died mid-run.

    Stages are not resumable, so the job is closed with an error rather
    than re-queued.

    Returns:
        Number of jobs failed
    """
    stuck = store.stuck_jobs()
    if stuck:
        logger.warning(f"Found {len(stuck)} stuck jobs. Marking them as failed.")
    for job_id in stuck:
        store.fail_job(job_id, STUCK_JOB_MESSAGE)
        logger.info(f"Failed stuck job {job_id}")
    return len(stuck)


def build_runner(config: Config) -> PipelineRunner:
    store = JobStore(
        build_engine(config.database_url),
        build_notifier(config.notifier_backend, config.redis_url),
    )
    store.create_tables()
    catalog = StageCatalog(config.stages_config)
    return PipelineRunner(
        store,
        build_default_stages(catalog, config.stage_delay_scale),
        webhook_url=config.webhook_url,
    )


def run_worker():
    """Main worker loop."""
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, markup=True)],
    )

    logger.info("[bold cyan]Starting Design Pipeline Worker[/bold cyan]")
    try:
        config.ensure_directories()
        runner = build_runner(config)
        store = runner.store
        if config.recover_stuck_jobs:
            fail_stuck_jobs(store)
    except Exception as e:
        logger.critical(f"Failed to initialize worker: {e}")
        return

    logger.info("Starting worker loop. Press Ctrl+C to stop.")

    running = True

    def signal_handler(sig, frame):
        nonlocal running
        logger.info("Shutting down worker...")
        running = False

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    while running:
        try:
            job_id = store.next_pending_job()
            if job_id:
                logger.info(f"Processing design {job_id}")
                record = runner.run(job_id)
                logger.info(f"Finished design {job_id}: [bold]{record.status}[/bold]")
            else:
                time.sleep(config.poll_interval_sec)
        except JobConflictError as e:
            # Another worker claimed it first
            logger.debug(e.message)
        except Exception as e:
            logger.error(f"Error in worker loop: {e}")
            time.sleep(config.poll_interval_sec)

    store.close()


if __name__ == "__main__":
    run_worker()
