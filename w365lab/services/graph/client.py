# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Synchronous HTTP client for Microsoft Graph.

The client handles:
- Bearer authentication (one forced token refresh on 401)
- v1.0 and beta endpoints
- @odata.nextLink paging
- Retries on throttling (429/503/504), honouring Retry-After
- Mapping error responses to the GraphAPIError hierarchy

Provisioning is strictly sequential, so a blocking httpx.Client is used.

Example:
    client = GraphClient(settings.graph, GraphTokenProvider(settings.graph))
    users = client.list_all("/users", params={"$filter": "..."})
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from w365lab.core.config.settings import GraphSettings
from w365lab.services.graph.auth import TokenProvider
from w365lab.services.graph.exceptions import (
    GraphAPIError,
    GraphAuthError,
    GraphConflictError,
    GraphConnectionError,
    GraphNotFoundError,
    GraphThrottledError,
    GraphTimeoutError,
    UnexpectedResponseError,
)

logger = logging.getLogger(__name__)

THROTTLE_STATUS_CODES = {429, 503, 504}

# Fragments of Graph error messages that signal "already there"
CONFLICT_MESSAGE_FRAGMENTS = (
    "already exist",
    "conflicting object",
)

DEFAULT_RETRY_AFTER = 5.0


def odata_quote(value: str) -> str:
    """Quote a string literal for an OData $filter expression."""
    return "'" + value.replace("'", "''") + "'"


class GraphClient:
    """HTTP client for Microsoft Graph.

    Attributes:
        base_url: Graph v1.0 endpoint.
        beta_url: Graph beta endpoint.
        max_retries: Retries on throttled responses.
    """

    def __init__(
        self,
        settings: GraphSettings,
        token_provider: TokenProvider,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the Graph client.

        Args:
            settings: Graph settings (endpoints, timeout, retries).
            token_provider: Source of bearer tokens.
            transport: Optional httpx transport (tests use httpx.MockTransport).
            sleep: Sleep function used between throttling retries.
        """
        self.base_url = settings.base_url.rstrip("/")
        self.beta_url = settings.beta_url.rstrip("/")
        self.max_retries = settings.max_retries
        self._token_provider = token_provider
        self._sleep = sleep
        self._client = httpx.Client(
            timeout=settings.timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "GraphClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _url(self, path: str, beta: bool) -> str:
        if path.startswith("https://"):
            return path
        root = self.beta_url if beta else self.base_url
        return f"{root}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        beta: bool = False,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Send a request and return the decoded JSON body.

        Args:
            method: HTTP method.
            path: Path relative to the endpoint root, or an absolute URL.
            beta: Use the beta endpoint.
            params: Query parameters.
            json: JSON request body.

        Returns:
            Decoded JSON object, or None for empty (204) responses.

        Raises:
            GraphAPIError: (or a subclass) for error responses.
            GraphConnectionError: If Graph could not be reached.
            GraphTimeoutError: If the request timed out.
        """
        url = self._url(path, beta)
        refreshed = False
        attempt = 0

        while True:
            token = self._token_provider.get_token(force_refresh=refreshed)
            try:
                response = self._client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.TimeoutException as e:
                logger.warning("Graph request timed out: %s %s", method, url)
                raise GraphTimeoutError(
                    f"Request timed out: {method} {path}",
                    details={"error_type": type(e).__name__},
                ) from e
            except httpx.RequestError as e:
                logger.error("Graph connection error: %s", str(e))
                raise GraphConnectionError(
                    f"Failed to connect to Graph: {str(e)}",
                    details={"error_type": type(e).__name__},
                ) from e

            if response.status_code == 401 and not refreshed:
                logger.info("Graph returned 401, refreshing token")
                refreshed = True
                continue

            if response.status_code in THROTTLE_STATUS_CODES and attempt < self.max_retries:
                attempt += 1
                delay = self._retry_after(response)
                logger.warning(
                    "Graph throttled %s %s (HTTP %d), retry %d/%d in %.1fs",
                    method,
                    path,
                    response.status_code,
                    attempt,
                    self.max_retries,
                    delay,
                )
                self._sleep(delay)
                continue

            self._raise_for_status(response, method, path)
            if response.status_code == 204 or not response.content:
                return None
            try:
                body = response.json()
            except ValueError as e:
                raise UnexpectedResponseError(
                    "Response body is not JSON", path=path
                ) from e
            if not isinstance(body, dict):
                raise UnexpectedResponseError("Response body is not a JSON object", path=path)
            return body

    def get(
        self,
        path: str,
        *,
        beta: bool = False,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """GET a single resource."""
        body = self.request("GET", path, beta=beta, params=params)
        if body is None:
            raise UnexpectedResponseError("Empty response to GET", path=path)
        return body

    def post(
        self,
        path: str,
        json: dict[str, Any],
        *,
        beta: bool = False,
    ) -> dict[str, Any] | None:
        """POST a JSON body."""
        return self.request("POST", path, beta=beta, json=json)

    def list_all(
        self,
        path: str,
        *,
        beta: bool = False,
        params: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """GET a collection, following @odata.nextLink until exhausted.

        Returns:
            All items of the collection.

        Raises:
            UnexpectedResponseError: If a page has no "value" list.
        """
        items: list[dict[str, Any]] = []
        next_path: str | None = path
        next_params = params
        while next_path:
            page = self.get(next_path, beta=beta, params=next_params)
            value = page.get("value")
            if not isinstance(value, list):
                raise UnexpectedResponseError(
                    "Collection response has no 'value' list", path=next_path
                )
            items.extend(value)
            next_path = page.get("@odata.nextLink")
            # nextLink already carries the query string
            next_params = None
        return items

    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("Retry-After")
        if header:
            try:
                return max(float(header), 0.0)
            except ValueError:
                pass
        return DEFAULT_RETRY_AFTER

    def _raise_for_status(self, response: httpx.Response, method: str, path: str) -> None:
        """Raise the matching GraphAPIError for an error response."""
        if response.is_success:
            return

        status = response.status_code
        code = None
        message = response.text or response.reason_phrase
        try:
            error = response.json().get("error", {})
            code = error.get("code")
            message = error.get("message") or message
        except (ValueError, AttributeError):
            pass
        request_id = response.headers.get("request-id")
        description = f"{method} {path}: {message}"

        if status == 404:
            raise GraphNotFoundError(description, status, code, request_id)
        if status == 409 or (
            status == 400
            and any(fragment in message.lower() for fragment in CONFLICT_MESSAGE_FRAGMENTS)
        ):
            raise GraphConflictError(description, status, code, request_id)
        if status in THROTTLE_STATUS_CODES:
            raise GraphThrottledError(
                description, status, code, request_id, retry_after=self._retry_after(response)
            )
        if status in (401, 403):
            raise GraphAuthError(description, status, code, request_id)
        raise GraphAPIError(description, status, code, request_id)
