"""Custom Flask application class with container reference."""

from flask import Flask

from insights_exporter.services.container import ServiceContainer


class App(Flask):
    """Custom Flask application with typed container attribute."""

    container: ServiceContainer
