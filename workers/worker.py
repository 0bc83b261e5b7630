"""Worker for the ERP sales document pipeline.

Listens for tasks and executes the automatic ERP batch workflow and its
activities.

Supports multiple task queues for separation of concerns:
- sales-default: workflow tasks, connection lookup, document generation (DB only)
- sales-erp: ERP send activities (external API, rate-limited by the ERP)

Run with --queue <name> to specify which queue to poll.
Run with --all to poll all queues (for local development).
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from core.observability.logging import configure_from_settings
from documents.db import init_document_db
from sales_engine.db import init_template_db
from connectors.connection_store import init_connection_db
from workflows.erp_batch_workflow import (
    AutoErpBatchWorkflow,
    TASK_QUEUE_DEFAULT,
    TASK_QUEUE_ERP,
)
from activities.erp_documents import (
    list_auto_connections,
    generate_pending_documents,
    send_pending_documents,
)


logger = logging.getLogger(__name__)

# =============================================================================
# Activity Groupings by Task Queue
# =============================================================================

# Default queue: DB reads and document generation (fast, local)
DEFAULT_QUEUE_ACTIVITIES = [
    list_auto_connections,
    generate_pending_documents,
]

# ERP queue: ERP API calls (slow, may be rate-limited)
ERP_QUEUE_ACTIVITIES = [
    send_pending_documents,
]

ALL_ACTIVITIES = DEFAULT_QUEUE_ACTIVITIES + ERP_QUEUE_ACTIVITIES

WORKFLOWS = [AutoErpBatchWorkflow]


def build_workers(client, queue: str = None, all_queues: bool = False) -> list:
    """Create the Worker objects for the requested queue(s).

    Args:
        client: Connected Temporal client
        queue: Specific queue to poll (sales-default, sales-erp)
        all_queues: If True, poll all queues with all activities (local dev mode)
    """
    if all_queues:
        logger.info("Running in ALL-QUEUES mode (local development)")
        return [
            Worker(
                client,
                task_queue=task_queue,
                workflows=WORKFLOWS if task_queue == TASK_QUEUE_DEFAULT else [],
                activities=ALL_ACTIVITIES,
            )
            for task_queue in [TASK_QUEUE_DEFAULT, TASK_QUEUE_ERP]
        ]

    task_queue = queue or TASK_QUEUE_DEFAULT
    if task_queue == TASK_QUEUE_ERP:
        activities = ERP_QUEUE_ACTIVITIES
        workflows = []
    else:
        activities = DEFAULT_QUEUE_ACTIVITIES
        workflows = WORKFLOWS

    logger.info(f"Worker created for queue '{task_queue}':")
    logger.info(f"  - Workflows: {len(workflows)}")
    logger.info(f"  - Activities: {len(activities)}")
    return [Worker(client, task_queue=task_queue, workflows=workflows, activities=activities)]


async def run_worker(queue: str = None, all_queues: bool = False):
    """Start worker listening on task queue(s).

    Raises:
        Exception: If connection to Temporal fails
    """
    init_template_db()
    init_document_db()
    init_connection_db()

    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    workers = build_workers(client, queue=queue, all_queues=all_queues)

    try:
        logger.info("Worker(s) running... (Ctrl+C to stop)")
        await asyncio.gather(*[w.run() for w in workers])
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="ERP Sales Document Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        choices=[TASK_QUEUE_DEFAULT, TASK_QUEUE_ERP],
        default=TASK_QUEUE_DEFAULT,
        help="Task queue to poll (default: sales-default)"
    )
    parser.add_argument(
        "--all", "-a",
        action="store_true",
        dest="all_queues",
        help="Poll all queues (local development mode)"
    )

    args = parser.parse_args()
    configure_from_settings()
    asyncio.run(run_worker(queue=args.queue, all_queues=args.all_queues))


if __name__ == "__main__":
    main()
