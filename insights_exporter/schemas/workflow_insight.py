"""Workflow insights response schemas.

Only ``success_rate`` is exported as a metric today. The remaining fields are
decoded so other exporters can consume them, and unknown fields are kept so a
record survives a parse and dump without loss.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DurationMetrics(BaseModel):
    """Workflow duration statistics in seconds."""

    model_config = ConfigDict(extra="allow")

    min: int | None = None
    max: int | None = None
    median: int | None = None
    mean: int | None = None
    p95: int | None = None
    standard_deviation: float | None = None


class WorkflowMetrics(BaseModel):
    """Aggregated run metrics for one workflow over the reporting window."""

    model_config = ConfigDict(extra="allow")

    success_rate: float
    total_runs: int | None = None
    successful_runs: int | None = None
    failed_runs: int | None = None
    mttr: int | None = None
    total_credits_used: int | None = None
    total_recoveries: int | None = None
    throughput: float | None = None
    duration_metrics: DurationMetrics | None = None


class WorkflowInsightRecord(BaseModel):
    """One named workflow with its metrics for a reporting window."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    metrics: WorkflowMetrics
    window_start: datetime | None = None
    window_end: datetime | None = None

    @property
    def success_rate(self) -> float:
        return self.metrics.success_rate


class WorkflowInsightPage(BaseModel):
    """A single page of workflow insights plus its continuation token."""

    model_config = ConfigDict(extra="allow")

    items: list[WorkflowInsightRecord]
    next_page_token: str | None = None
