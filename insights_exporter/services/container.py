"""Dependency injection container for the insights exporter."""

from dependency_injector import containers, providers
from prometheus_client import CollectorRegistry

from insights_exporter.config import Settings
from insights_exporter.services.insights_client import InsightsClient
from insights_exporter.services.metrics_service import MetricsService
from insights_exporter.services.snapshot_scheduler import FailurePolicy, SnapshotScheduler
from insights_exporter.services.workflow_metrics import WorkflowMetricsRegistry
from insights_exporter.utils.lifecycle_coordinator import LifecycleCoordinator


class ServiceContainer(containers.DeclarativeContainer):
    """Container for service dependency injection."""

    # Configuration providers
    config = providers.Dependency(instance_of=Settings)

    # Registry owned by the application and served on /metrics
    collector_registry = providers.Singleton(CollectorRegistry)

    # Lifecycle coordinator - manages startup and graceful shutdown
    lifecycle_coordinator = providers.Singleton(
        LifecycleCoordinator,
        graceful_shutdown_timeout=config.provided.graceful_shutdown_timeout,
    )

    # Metrics service - shutdown metrics and exposition text
    metrics_service = providers.Singleton(
        MetricsService,
        registry=collector_registry,
        lifecycle_coordinator=lifecycle_coordinator,
    )

    # Workflow success-rate gauge (read side shared, write side owned by the scheduler)
    workflow_metrics_registry = providers.Singleton(
        WorkflowMetricsRegistry,
        registry=collector_registry,
    )

    insights_client = providers.Singleton(InsightsClient, settings=config)

    failure_policy = providers.Factory(
        FailurePolicy,
        remote_error_threshold=config.provided.remote_error_escalation_threshold,
        decode_error_threshold=config.provided.decode_error_escalation_threshold,
    )

    # Snapshot scheduler - the only holder of the registry writer
    snapshot_scheduler = providers.Singleton(
        SnapshotScheduler,
        client=insights_client,
        writer=workflow_metrics_registry.provided.acquire_writer.call(),
        credential=config.provided.api_credential,
        lifecycle_coordinator=lifecycle_coordinator,
        failure_policy=failure_policy,
        registry=collector_registry,
        interval_seconds=config.provided.poll_interval_seconds,
        run_immediately=config.provided.snapshot_on_startup,
    )


def start_background_services(container: ServiceContainer) -> None:
    """Eagerly instantiate services that react to lifecycle events.

    The scheduler starts its loop on the STARTUP event fired by create_app().
    """
    container.metrics_service()
    container.snapshot_scheduler()
