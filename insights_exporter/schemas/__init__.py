"""Response schemas for the CI insights API."""

from insights_exporter.schemas.workflow_insight import (
    DurationMetrics,
    WorkflowInsightPage,
    WorkflowInsightRecord,
    WorkflowMetrics,
)

__all__ = [
    "DurationMetrics",
    "WorkflowInsightPage",
    "WorkflowInsightRecord",
    "WorkflowMetrics",
]
