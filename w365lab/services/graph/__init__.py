# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Microsoft Graph integration.

- auth: MSAL client credentials token provider
- client: httpx-based Graph client (paging, throttling, error mapping)
- directory: typed directory and Intune operations
- exceptions: Graph exception hierarchy
"""

from w365lab.services.graph.auth import (
    GraphTokenProvider,
    StaticTokenProvider,
    TokenProvider,
)
from w365lab.services.graph.client import GraphClient, odata_quote
from w365lab.services.graph.directory import (
    ALL_TAGGED_RESOURCES,
    DirectoryService,
)
from w365lab.services.graph.exceptions import (
    GraphAPIError,
    GraphAuthError,
    GraphConflictError,
    GraphConnectionError,
    GraphError,
    GraphNotFoundError,
    GraphThrottledError,
    GraphTimeoutError,
    UnexpectedResponseError,
)

__all__ = [
    "ALL_TAGGED_RESOURCES",
    "DirectoryService",
    "GraphAPIError",
    "GraphAuthError",
    "GraphClient",
    "GraphConflictError",
    "GraphConnectionError",
    "GraphError",
    "GraphNotFoundError",
    "GraphThrottledError",
    "GraphTimeoutError",
    "GraphTokenProvider",
    "StaticTokenProvider",
    "TokenProvider",
    "UnexpectedResponseError",
    "odata_quote",
]
