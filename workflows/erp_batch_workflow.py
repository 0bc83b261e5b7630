"""
Automatic ERP Batch Workflow

For every ERP connection with automation enabled:
GENERATE (auto_generate_document) → SEND (auto_send_to_erp)

Started on a schedule owned by the caller (Temporal schedule or cron running
scripts/start_auto_batch.py). One connection failing does not stop the others.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from activities.erp_documents import (
        list_auto_connections,
        generate_pending_documents,
        send_pending_documents,
        ListAutoConnectionsInput,
        ConnectionBatchInput,
    )


TASK_QUEUE_DEFAULT = "sales-default"
TASK_QUEUE_ERP = "sales-erp"


@dataclass
class AutoErpBatchInput:
    """Input for AutoErpBatchWorkflow.

    Attributes:
        tenant_id: Restrict the pass to one tenant (None = all tenants)
    """
    tenant_id: Optional[str] = None


@dataclass
class AutoErpBatchOutput:
    """Totals over all processed connections."""
    connection_count: int = 0
    generated_count: int = 0
    generate_failed_count: int = 0
    sent_count: int = 0
    send_failed_count: int = 0
    errors: List[str] = field(default_factory=list)


@workflow.defn
class AutoErpBatchWorkflow:
    """Generate and send ERP sales documents for automated connections."""

    @workflow.run
    async def run(self, input: AutoErpBatchInput) -> AutoErpBatchOutput:
        # DB activities: safe to retry, generation is guarded by the unique index
        db_activity_options = {
            "start_to_close_timeout": timedelta(minutes=5),
            "retry_policy": RetryPolicy(
                maximum_attempts=3,
                initial_interval=timedelta(seconds=1),
                backoff_coefficient=2.0,
                non_retryable_error_types=["ConfigurationError", "ConnectionNotFoundError"],
            ),
            "task_queue": TASK_QUEUE_DEFAULT,
        }

        # ERP sends: one attempt; a FAILED document is retried by an explicit resend
        erp_activity_options = {
            "start_to_close_timeout": timedelta(minutes=30),
            "retry_policy": RetryPolicy(maximum_attempts=1),
            "task_queue": TASK_QUEUE_ERP,
        }

        output = AutoErpBatchOutput()

        connections = await workflow.execute_activity(
            list_auto_connections,
            ListAutoConnectionsInput(tenant_id=input.tenant_id),
            **db_activity_options,
        )
        output.connection_count = len(connections)
        workflow.logger.info(f"Auto ERP batch over {len(connections)} connection(s)")

        for connection in connections:
            batch_input = ConnectionBatchInput(erp_connection_id=connection.erp_connection_id)

            try:
                if connection.auto_generate_document:
                    generated = await workflow.execute_activity(
                        generate_pending_documents,
                        batch_input,
                        **db_activity_options,
                    )
                    output.generated_count += generated.success_count
                    output.generate_failed_count += generated.fail_count
                    output.errors.extend(generated.errors)

                if connection.auto_send_to_erp:
                    sent = await workflow.execute_activity(
                        send_pending_documents,
                        batch_input,
                        **erp_activity_options,
                    )
                    output.sent_count += sent.success_count
                    output.send_failed_count += sent.fail_count
                    output.errors.extend(sent.errors)

            except ActivityError as e:
                workflow.logger.error(f"Connection {connection.erp_connection_id} failed: {e}")
                output.errors.append(f"{connection.erp_connection_id}: {e}")

        workflow.logger.info(
            f"Auto ERP batch done: generated {output.generated_count}, sent {output.sent_count}"
        )
        return output
