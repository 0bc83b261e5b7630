"""Start the automatic ERP batch workflow.

Connects to Temporal, starts AutoErpBatchWorkflow for all tenants (or the
one given with --tenant), waits for it and prints the totals. Meant to be
run from cron or a Temporal schedule.
"""

import argparse
import asyncio
import logging
import sys
import uuid
from dataclasses import asdict
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from temporal_client import get_temporal_client
from workflows.erp_batch_workflow import AutoErpBatchWorkflow, AutoErpBatchInput, TASK_QUEUE_DEFAULT


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def start_auto_batch(tenant_id: str = None):
    """Start the batch workflow and return its output."""
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    workflow_id = f"auto-erp-batch-{tenant_id or 'all'}-{uuid.uuid4().hex[:8]}"
    handle = await client.start_workflow(
        AutoErpBatchWorkflow.run,
        AutoErpBatchInput(tenant_id=tenant_id),
        task_queue=TASK_QUEUE_DEFAULT,
        id=workflow_id,
    )
    logger.info(f"Workflow started: {handle.id}")

    result = await handle.result()
    logger.info(
        f"Batch completed: {result.connection_count} connection(s), "
        f"generated {result.generated_count}, sent {result.sent_count}"
    )
    return result


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Run the automatic ERP batch once")
    parser.add_argument("--tenant", "-t", default=None, help="Only process this tenant")
    args = parser.parse_args()

    try:
        result = asyncio.run(start_auto_batch(args.tenant))
    except Exception as e:
        logger.error(f"Workflow failed: {e}", exc_info=True)
        return 1
    print(asdict(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
