"""Client for the CircleCI v2 workflow insights API."""

import logging

import httpx
from pydantic import ValidationError

from insights_exporter.config import Settings
from insights_exporter.exceptions import DecodeError, RemoteError, TransportError
from insights_exporter.schemas.workflow_insight import (
    WorkflowInsightPage,
    WorkflowInsightRecord,
)

logger = logging.getLogger(__name__)


class InsightsClient:
    """Fetches workflow insights for one project, branch and reporting window.

    Every request carries an explicit timeout so a hung remote call cannot
    block the snapshot scheduler indefinitely. Failures are surfaced as
    TransportError, RemoteError or DecodeError so the caller can grade them.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize the client.

        Args:
            settings: Application settings naming the project and endpoint
        """
        self._base_url = settings.api_base_url.rstrip("/")
        self._project_slug = settings.project_slug
        self._branch = settings.branch
        self._reporting_window = settings.reporting_window
        self._auth_header = settings.auth_header
        self._timeout = settings.http_timeout

    @property
    def workflows_url(self) -> str:
        return f"{self._base_url}/insights/{self._project_slug}/workflows"

    def fetch_page(
        self, credential: str, continuation_token: str | None = None
    ) -> WorkflowInsightPage:
        """Fetch a single page of workflow insights.

        Args:
            credential: API token presented in the auth header
            continuation_token: Token from the previous page, None for the first

        Returns:
            The decoded page, including its next_page_token

        Raises:
            TransportError: If the endpoint could not be reached
            RemoteError: If the endpoint answered with a non-success status
            DecodeError: If the body does not match the expected shape
        """
        params: dict[str, str] = {
            "branch": self._branch,
            "reporting-window": self._reporting_window,
        }
        if continuation_token is not None:
            params["page-token"] = continuation_token

        headers = {
            self._auth_header: credential,
            "Accept": "application/json",
        }

        try:
            response = httpx.get(
                self.workflows_url,
                params=params,
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.TransportError as e:
            logger.warning("Insights request to %s failed: %s", self.workflows_url, e)
            raise TransportError(f"Failed to reach insights API: {e}") from e

        if not 200 <= response.status_code < 300:
            raise RemoteError(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            raise DecodeError(f"Insights response is not valid JSON: {e}") from e

        try:
            page = WorkflowInsightPage.model_validate(payload)
        except ValidationError as e:
            raise DecodeError(
                f"Insights response does not match the expected shape: {e}"
            ) from e

        logger.debug(
            "Fetched insights page",
            extra={
                "items": len(page.items),
                "has_next_page": page.next_page_token is not None,
            },
        )
        return page

    def fetch_all(self, credential: str) -> list[WorkflowInsightRecord]:
        """Fetch every page of workflow insights.

        Records are concatenated in response order. A failure on any page
        fails the whole call so that no partial result is ever published.

        Raises:
            TransportError, RemoteError, DecodeError: As raised by fetch_page,
                or DecodeError if the API hands back a token it already gave.
        """
        records: list[WorkflowInsightRecord] = []
        seen_tokens: set[str] = set()
        token: str | None = None

        while True:
            page = self.fetch_page(credential, token)
            records.extend(page.items)

            token = page.next_page_token
            if token is None:
                break

            if token in seen_tokens:
                raise DecodeError(
                    f"Insights API repeated continuation token {token!r}"
                )
            seen_tokens.add(token)

        logger.info(
            "Fetched workflow insights",
            extra={"records": len(records), "pages": len(seen_tokens) + 1},
        )
        return records
