"""Worker for TTB onboarding commits.

Connects to Temporal, polls the commit task queue and executes the
onboarding commit workflow and its activities.

Run with --queue <name> to poll a queue other than the configured one.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.onboarding_commit_workflow import TTBOnboardingCommitWorkflow
from activities import COMMIT_ACTIVITIES


logger = get_logger("workers.worker")

WORKFLOWS = [TTBOnboardingCommitWorkflow]


def build_worker(client, task_queue: str) -> Worker:
    """Worker registered with the commit workflow and its activities."""
    return Worker(
        client,
        task_queue=task_queue,
        workflows=WORKFLOWS,
        activities=COMMIT_ACTIVITIES,
    )


async def run_worker(queue: str = None):
    """Start worker listening on the task queue.
    
    Args:
        queue: Queue to poll (defaults to TTB_TASK_QUEUE)
    
    Raises:
        Exception: If connection to Temporal fails
    """
    task_queue = queue or get_settings().task_queue
    client = None
    
    try:
        client = await get_temporal_client()
        logger.info(f"Connected to Temporal: {client.namespace}")
        
        worker = build_worker(client, task_queue)
        logger.info(f"Worker created for queue '{task_queue}':")
        logger.info(f"  - Workflows: {len(WORKFLOWS)}")
        logger.info(f"  - Activities: {len(COMMIT_ACTIVITIES)}")
        
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
        
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.exception(f"Worker error: {e}")
        raise


def main():
    """Entry point for worker with CLI args."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="TTB Onboarding Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=settings.task_queue,
        help=f"Task queue to poll (default: {settings.task_queue})"
    )
    
    args = parser.parse_args()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)
    asyncio.run(run_worker(queue=args.queue))


if __name__ == "__main__":
    main()
