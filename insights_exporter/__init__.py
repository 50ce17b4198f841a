"""Flask application factory."""

from insights_exporter.app import App
from insights_exporter.config import Settings


def create_app(settings: "Settings | None" = None, skip_background_services: bool = False) -> App:
    """Create and configure the exporter application.

    Args:
        settings: Optional settings instance (loaded from the environment if omitted)
        skip_background_services: Skip starting the snapshot scheduler (for CLI/tests)

    Returns:
        Configured Flask application instance

    Raises:
        ConfigError: If settings are loaded here and the environment is invalid.
    """
    app = App(__name__)

    if settings is None:
        settings = Settings.load()

    from insights_exporter.services.container import ServiceContainer

    container = ServiceContainer()
    container.config.override(settings)

    # Wire container to all API modules via package scanning
    container.wire(packages=["insights_exporter.api"])

    app.container = container

    from insights_exporter.api.metrics import metrics_bp

    app.register_blueprint(metrics_bp)

    # The gauge is exposed (without samples) before the first snapshot completes
    container.workflow_metrics_registry()

    if not skip_background_services:
        from insights_exporter.services.container import start_background_services

        start_background_services(container)

        # Services that registered for STARTUP notifications are invoked here
        container.lifecycle_coordinator().fire_startup()

    return app
