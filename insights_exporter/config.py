"""Configuration management using Pydantic settings.

Two-layer configuration system:
1. Environment: Loads raw values from environment variables (UPPER_CASE)
2. Settings: Clean application settings with lowercase fields and derived values

The poll interval and the API credential are resolved by dedicated functions
so that startup can fail fast with a descriptive ConfigError before the
snapshot scheduler is armed.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from insights_exporter.exceptions import ConfigError

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_POLL_INTERVAL_SECONDS = 300

# Reporting windows accepted by the CircleCI v2 insights API
REPORTING_WINDOWS = (
    "last-24-hours",
    "last-7-days",
    "last-30-days",
    "last-60-days",
    "last-90-days",
)

VCS_TYPES = ("gh", "github", "bb", "bitbucket", "circleci")


class Environment(BaseSettings):
    """Raw environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=_PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Snapshot source ────────────────────────────────────────────────

    API_POLL_INTERVAL_SECONDS: str | None = Field(default=None)
    API_CREDENTIAL: str | None = Field(default=None)

    # Variable names used by earlier deployments of the exporter
    CIRCLECI_API_INTERVAL: str | None = Field(default=None)
    CIRCLECI_TOKEN: str | None = Field(default=None)

    INSIGHTS_API_BASE_URL: str = Field(default="https://circleci.com/api/v2")
    INSIGHTS_VCS: str = Field(default="gh")
    INSIGHTS_ORG: str = Field(default="quipper")
    INSIGHTS_REPO: str = Field(default="monorepo")
    INSIGHTS_BRANCH: str = Field(default="develop")
    INSIGHTS_REPORTING_WINDOW: str = Field(default="last-7-days")
    INSIGHTS_AUTH_HEADER: str = Field(default="Circle-Token")
    INSIGHTS_HTTP_TIMEOUT: float = Field(default=10.0)

    # ── Failure policy ─────────────────────────────────────────────────

    REMOTE_ERROR_ESCALATION_THRESHOLD: int = Field(default=3)
    DECODE_ERROR_ESCALATION_THRESHOLD: int = Field(default=2)
    SNAPSHOT_ON_STARTUP: bool = Field(default=True)

    # ── Server ─────────────────────────────────────────────────────────

    FLASK_ENV: str = Field(default="production")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8080)
    WAITRESS_THREADS: int = Field(default=4)
    GRACEFUL_SHUTDOWN_TIMEOUT: int = Field(default=30)


def resolve_interval(env: Environment) -> int:
    """Resolve the snapshot interval in seconds.

    Falls back to DEFAULT_POLL_INTERVAL_SECONDS when no override is set.

    Raises:
        ConfigError: If the override is not a positive integer.
    """
    raw = env.API_POLL_INTERVAL_SECONDS
    if raw is None or not raw.strip():
        raw = env.CIRCLECI_API_INTERVAL
    if raw is None or not raw.strip():
        return DEFAULT_POLL_INTERVAL_SECONDS

    try:
        interval = int(raw.strip())
    except ValueError:
        raise ConfigError(
            f"invalid interval: API_POLL_INTERVAL_SECONDS={raw!r} is not an integer"
        ) from None

    if interval <= 0:
        raise ConfigError(
            f"invalid interval: API_POLL_INTERVAL_SECONDS={raw!r} must be positive"
        )

    return interval


def resolve_credential(env: Environment) -> str:
    """Resolve the API credential presented to the insights endpoint.

    The credential is sent as an HTTP header value, so it must be printable
    ASCII.

    Raises:
        ConfigError: If no credential is configured or it cannot be sent.
    """
    for value in (env.API_CREDENTIAL, env.CIRCLECI_TOKEN):
        if value is not None and value.strip():
            credential = value.strip()
            if not (credential.isascii() and credential.isprintable()):
                raise ConfigError(
                    "invalid credential: API_CREDENTIAL must contain only printable ASCII characters"
                )
            return credential

    raise ConfigError("missing credential: API_CREDENTIAL is not set")


class Settings(BaseModel):
    """Application settings with lowercase fields and derived values."""

    model_config = ConfigDict(from_attributes=True)

    # ── Snapshot source ────────────────────────────────────────────────

    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    api_credential: str = Field(repr=False)
    api_base_url: str = "https://circleci.com/api/v2"
    vcs: str = "gh"
    org: str = "quipper"
    repo: str = "monorepo"
    branch: str = "develop"
    reporting_window: str = "last-7-days"
    auth_header: str = "Circle-Token"
    http_timeout: float = 10.0

    # ── Failure policy ─────────────────────────────────────────────────

    remote_error_escalation_threshold: int = 3
    decode_error_escalation_threshold: int = 2
    snapshot_on_startup: bool = True

    # ── Server ─────────────────────────────────────────────────────────

    flask_env: str = "production"
    host: str = "0.0.0.0"
    port: int = 8080
    waitress_threads: int = 4
    graceful_shutdown_timeout: int = 30

    @property
    def is_testing(self) -> bool:
        return self.flask_env == "testing"

    @property
    def project_slug(self) -> str:
        return f"{self.vcs}/{self.org}/{self.repo}"

    def validate_config(self) -> None:
        """Check the promoted configuration inputs for recognized values.

        Raises:
            ConfigError: Listing every invalid setting.
        """
        errors: list[str] = []

        if self.vcs not in VCS_TYPES:
            errors.append(
                f"INSIGHTS_VCS must be one of {', '.join(VCS_TYPES)} (got {self.vcs!r})"
            )
        if not self.org:
            errors.append("INSIGHTS_ORG must not be empty")
        if not self.repo:
            errors.append("INSIGHTS_REPO must not be empty")
        if not self.branch:
            errors.append("INSIGHTS_BRANCH must not be empty")
        if self.reporting_window not in REPORTING_WINDOWS:
            errors.append(
                "INSIGHTS_REPORTING_WINDOW must be one of "
                f"{', '.join(REPORTING_WINDOWS)} (got {self.reporting_window!r})"
            )
        if not self.api_base_url.startswith(("http://", "https://")):
            errors.append("INSIGHTS_API_BASE_URL must be an http(s) URL")
        if not self.auth_header:
            errors.append("INSIGHTS_AUTH_HEADER must not be empty")
        if self.http_timeout <= 0:
            errors.append("INSIGHTS_HTTP_TIMEOUT must be positive")
        if self.remote_error_escalation_threshold < 1:
            errors.append("REMOTE_ERROR_ESCALATION_THRESHOLD must be at least 1")
        if self.decode_error_escalation_threshold < 1:
            errors.append("DECODE_ERROR_ESCALATION_THRESHOLD must be at least 1")

        if errors:
            raise ConfigError(
                "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            )

    @classmethod
    def load(cls, env: "Environment | None" = None) -> "Settings":
        """Load and validate settings from the environment.

        Raises:
            ConfigError: If any setting is missing or malformed.
        """
        if env is None:
            try:
                env = Environment()
            except ValidationError as e:
                raise ConfigError(f"Invalid environment: {e}") from e

        poll_interval_seconds = resolve_interval(env)
        api_credential = resolve_credential(env)

        settings = cls(
            # Snapshot source
            poll_interval_seconds=poll_interval_seconds,
            api_credential=api_credential,
            api_base_url=env.INSIGHTS_API_BASE_URL.rstrip("/"),
            vcs=env.INSIGHTS_VCS,
            org=env.INSIGHTS_ORG,
            repo=env.INSIGHTS_REPO,
            branch=env.INSIGHTS_BRANCH,
            reporting_window=env.INSIGHTS_REPORTING_WINDOW,
            auth_header=env.INSIGHTS_AUTH_HEADER,
            http_timeout=env.INSIGHTS_HTTP_TIMEOUT,

            # Failure policy
            remote_error_escalation_threshold=env.REMOTE_ERROR_ESCALATION_THRESHOLD,
            decode_error_escalation_threshold=env.DECODE_ERROR_ESCALATION_THRESHOLD,
            snapshot_on_startup=env.SNAPSHOT_ON_STARTUP,

            # Server
            flask_env=env.FLASK_ENV,
            host=env.HOST,
            port=env.PORT,
            waitress_threads=env.WAITRESS_THREADS,
            graceful_shutdown_timeout=env.GRACEFUL_SHUTDOWN_TIMEOUT,
        )
        settings.validate_config()
        return settings
