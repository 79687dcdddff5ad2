# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Custom exceptions for the Microsoft Graph client.

This module defines the exception hierarchy for Graph operations:
- GraphError: Base exception for all Graph-related errors
- GraphAPIError: Error response from Graph
- GraphNotFoundError: Resource not found (404)
- GraphConflictError: Resource or reference already exists
- GraphThrottledError: Throttled or temporarily unavailable (429/503/504)
- GraphAuthError: Token acquisition failed or request rejected (401/403)
- GraphConnectionError: Graph could not be reached
- GraphTimeoutError: A request timed out
- UnexpectedResponseError: Response did not have the expected shape
"""


class GraphError(Exception):
    """Base exception for all Graph-related errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation with details if available."""
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class GraphAPIError(GraphError):
    """Error response from Graph.

    Attributes:
        status_code: HTTP status code from the response.
        code: Graph error code (error.code in the response body).
        request_id: Graph request id, useful for support tickets.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        request_id: str | None = None,
        details: dict | None = None,
    ):
        self.status_code = status_code
        self.code = code
        self.request_id = request_id
        super().__init__(message, details)

    def __str__(self) -> str:
        """Return string representation with status code and error code."""
        base = self.message
        if self.code:
            base = f"{self.code}: {base}"
        if self.status_code:
            base = f"[{self.status_code}] {base}"
        if self.request_id:
            base = f"{base} (request-id: {self.request_id})"
        return base


class GraphNotFoundError(GraphAPIError):
    """The requested resource does not exist."""

    pass


class GraphConflictError(GraphAPIError):
    """The resource, member reference or activation already exists."""

    pass


class GraphThrottledError(GraphAPIError):
    """Graph throttled the request or is temporarily unavailable.

    Attributes:
        retry_after: Seconds Graph asked us to wait, if provided.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        request_id: str | None = None,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, status_code, code, request_id)


class GraphAuthError(GraphAPIError):
    """Authentication or authorization failed."""

    pass


class GraphConnectionError(GraphError):
    """Graph could not be reached."""

    pass


class GraphTimeoutError(GraphError):
    """A request to Graph timed out."""

    pass


class UnexpectedResponseError(GraphError):
    """A Graph response did not match the expected shape.

    Attributes:
        path: Request path that produced the response.
    """

    def __init__(self, message: str, path: str | None = None, details: dict | None = None):
        self.path = path
        super().__init__(message, details)

    def __str__(self) -> str:
        base = super().__str__()
        if self.path:
            base = f"{base} (path: {self.path})"
        return base
