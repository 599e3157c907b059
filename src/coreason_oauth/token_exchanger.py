# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oauth

"""
TokenExchanger component for the OAuth 2.0 Authorization Code Grant.
"""

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_oauth.config import OAuthProviderConfig
from coreason_oauth.exceptions import CoreasonOAuthError, ExchangeFailedError
from coreason_oauth.models import TokenResponse
from coreason_oauth.transport import safe_json_fetch
from coreason_oauth.utils.logger import logger

tracer = trace.get_tracer(__name__)

GRANT_TYPE = "authorization_code"


class TokenExchanger:
    """
    Exchanges an authorization code for tokens at the IdP's token endpoint (RFC 6749, section 4.1.3).

    Attributes:
        config (OAuthProviderConfig): The provider configuration.
    """

    def __init__(self, config: OAuthProviderConfig, client: httpx.AsyncClient) -> None:
        """
        Initialize the TokenExchanger.

        Args:
            config: The provider configuration. Must carry a token endpoint and client secret.
            client: The async HTTP client to use for requests.

        Raises:
            ConfigurationMissingError: If the token endpoint or client secret is missing.
        """
        config.require("token_endpoint", "client_secret")
        self.config = config
        self.client = client

    async def exchange(self, code: str) -> TokenResponse:
        """
        Exchanges the authorization code for a token response.

        The code is single-use, so a failed exchange is never retried.

        Args:
            code: The value of the "code" parameter received via the redirect URI.

        Returns:
            TokenResponse: The parsed token response. Unknown fields are ignored.

        Raises:
            ValueError: If the code is empty.
            ExchangeFailedError: If the IdP cannot be reached, rejects the request,
                or returns a malformed response.
        """
        if not code or not code.strip():
            raise ValueError("Authorization code must be provided.")

        url = str(self.config.token_endpoint)
        secret = self.config.client_secret.get_secret_value() if self.config.client_secret else ""
        data = {
            "code": code.strip(),
            "client_id": self.config.client_id,
            "client_secret": secret,
            "redirect_uri": self.config.redirect_uri,
            "grant_type": GRANT_TYPE,
        }

        with tracer.start_as_current_span("exchange_code") as span:
            try:
                resp_data = await safe_json_fetch(
                    self.client, url, method="POST", data=data, headers={"Accept": "application/json"}
                )
            except httpx.HTTPStatusError as e:
                logger.error(f"POST to token endpoint failed with status {e.response.status_code}")
                span.set_status(Status(StatusCode.ERROR, "token endpoint rejected request"))
                raise ExchangeFailedError("Unable to POST to token endpoint.") from e
            except (httpx.HTTPError, CoreasonOAuthError) as e:
                logger.error(f"POST to token endpoint failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise ExchangeFailedError("Unable to POST to token endpoint.") from e

            if not isinstance(resp_data, dict):
                logger.error("Token endpoint returned a non-object JSON document")
                span.set_status(Status(StatusCode.ERROR, "invalid token response"))
                raise ExchangeFailedError("Invalid response from token endpoint.")

            try:
                token_response = TokenResponse(**resp_data)
            except ValidationError as e:
                logger.error(f"Invalid response from token endpoint: {e}")
                span.set_status(Status(StatusCode.ERROR, "invalid token response"))
                raise ExchangeFailedError("Invalid response from token endpoint.") from e

            if token_response.token_type and token_response.token_type.lower() != "bearer":
                logger.warning(f"Unexpected token type '{token_response.token_type}' from token endpoint")

            span.set_status(Status(StatusCode.OK))
            logger.debug("Authorization code exchanged successfully.")
            return token_response
