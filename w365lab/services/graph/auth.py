# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""App-only token acquisition for Microsoft Graph using MSAL.

The provisioning tool runs unattended with an app registration's client
credentials. MSAL keeps its own token cache; acquire_token_silent is tried
first and only falls back to a new client credentials request when the
cache has nothing usable.
"""

import logging
from typing import Protocol

import msal

from w365lab.core.config.settings import GraphSettings
from w365lab.services.graph.exceptions import GraphAuthError

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """Anything able to hand out a bearer token for Graph."""

    def get_token(self, force_refresh: bool = False) -> str: ...


class GraphTokenProvider:
    """Client credentials token provider backed by msal.ConfidentialClientApplication.

    Attributes:
        tenant_id: Tenant the tokens are issued for.
    """

    def __init__(
        self,
        settings: GraphSettings,
        app: msal.ConfidentialClientApplication | None = None,
    ) -> None:
        """Initialize the token provider.

        Args:
            settings: Graph settings with tenant and client credentials.
            app: Optional pre-built MSAL application (used by tests).

        Raises:
            GraphAuthError: If tenant, client id or secret are missing.
        """
        if app is None:
            missing = [
                name
                for name, value in (
                    ("GRAPH_TENANT_ID", settings.tenant_id),
                    ("GRAPH_CLIENT_ID", settings.client_id),
                    ("GRAPH_CLIENT_SECRET", settings.client_secret.get_secret_value()),
                )
                if not value
            ]
            if missing:
                raise GraphAuthError(
                    f"Missing Graph credentials: {', '.join(missing)}"
                )
            app = msal.ConfidentialClientApplication(
                client_id=settings.client_id,
                client_credential=settings.client_secret.get_secret_value(),
                authority=settings.authority,
            )
        self.tenant_id = settings.tenant_id
        self._scopes = settings.scopes
        self._app = app

    def get_token(self, force_refresh: bool = False) -> str:
        """Get an access token for Graph.

        Args:
            force_refresh: Skip the MSAL cache and request a new token.

        Returns:
            Bearer access token.

        Raises:
            GraphAuthError: If token acquisition fails.
        """
        result = None
        if not force_refresh:
            result = self._app.acquire_token_silent(self._scopes, account=None)
        if not result:
            result = self._app.acquire_token_for_client(scopes=self._scopes)

        if "access_token" in result:
            return result["access_token"]

        error_msg = result.get("error_description") or result.get("error") or "unknown error"
        logger.error("Failed to acquire Graph token: %s", error_msg)
        raise GraphAuthError(
            f"Token acquisition failed: {error_msg}",
            code=result.get("error"),
        )


class StaticTokenProvider:
    """Token provider returning a fixed token (pre-acquired, e.g. via az CLI)."""

    def __init__(self, token: str) -> None:
        self._token = token

    def get_token(self, force_refresh: bool = False) -> str:
        return self._token
