"""Workflow definitions module."""

from workflows.erp_batch_workflow import AutoErpBatchWorkflow, AutoErpBatchInput, AutoErpBatchOutput

__all__ = ["AutoErpBatchWorkflow", "AutoErpBatchInput", "AutoErpBatchOutput"]
