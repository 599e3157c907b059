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
AuthenticationService component: decides how an inbound request is authenticated.
"""

from typing import Any

import anyio
import httpx
from opentelemetry import trace
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_oauth.challenge import ChallengeBuilder
from coreason_oauth.config import OAuthProviderConfig
from coreason_oauth.exceptions import (
    ExchangeFailedError,
    InvalidCredentialsError,
    InvalidTokenError,
    KeySetUnavailableError,
    ValidationInternalError,
)
from coreason_oauth.jwks_provider import JWKSProvider
from coreason_oauth.models import AuthChallenge, FlowVariant, InboundCredentials, VerifiedIdentity
from coreason_oauth.token_exchanger import TokenExchanger
from coreason_oauth.transport import build_client
from coreason_oauth.utils.logger import logger
from coreason_oauth.validator import ClaimsValidator

tracer = trace.get_tracer(__name__)

INVALID_LOGIN = "Invalid login."


class AuthenticationServiceAsync:
    """
    Async implementation of the authentication decision core.
    Handles resources via async context manager.

    Exactly one flow variant is served per instance. No state is kept between requests.
    """

    identifier = "oauth"

    def __init__(
        self,
        config: OAuthProviderConfig,
        variant: FlowVariant,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the AuthenticationServiceAsync.

        Args:
            config: The provider configuration.
            variant: The flow this deployment uses.
            client: External async client (optional). If not provided, one is created and owned.

        Raises:
            ConfigurationMissingError: If the configuration lacks a value the flow requires.
        """
        self.config = config
        self.variant = variant

        config.require(
            "authorization_endpoint", "jwks_endpoint", "issuer", "client_id", "redirect_uri", "username_claim_type"
        )

        self._internal_client = client is None
        self._client = client if client is not None else build_client(config)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        self.challenge_builder = ChallengeBuilder(config)
        self.jwks_provider = JWKSProvider(config.jwks_endpoint, self._client, cache_ttl=config.jwks_cache_ttl)
        self.validator = ClaimsValidator(
            jwks_provider=self.jwks_provider,
            issuer=config.issuer,
            audience=config.client_id,
            username_claim=config.username_claim_type,
            pii_salt=config.pii_salt,
            allowed_algorithms=config.allowed_algorithms,
            leeway=config.clock_skew_leeway,
            max_future_validity=config.max_token_validity_minutes * 60,
        )
        self.exchanger: TokenExchanger | None = None
        if variant is FlowVariant.AUTHORIZATION_CODE:
            self.exchanger = TokenExchanger(config, self._client)

    async def __aenter__(self) -> "AuthenticationServiceAsync":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def _exchange_and_validate(self, exchanger: TokenExchanger, code: str) -> str:
        token_response = await exchanger.exchange(code)
        if not token_response.id_token:
            raise InvalidTokenError("Token response did not include an ID token")
        # Same validation as the implicit flow
        return await self.validator.validate(token_response.id_token)

    async def authenticate(self, credentials: InboundCredentials) -> VerifiedIdentity:
        """
        Authenticates the request described by the given credentials.

        An ID token is validated directly. An authorization code (code flow only) is
        exchanged for tokens and the returned ID token validated. Without either, the
        caller is challenged to log in at the IdP.

        Args:
            credentials: The credentials extracted from the inbound request.

        Returns:
            VerifiedIdentity: The verified username and the original credentials.

        Raises:
            InvalidCredentialsError: If no usable credentials were given (with a challenge),
                or the given credentials were rejected (without a challenge).
        """
        with tracer.start_as_current_span("authenticate") as span:
            span.set_attribute("oauth.flow", self.variant.value)

            if credentials.id_token is not None:
                attempt = self.validator.validate(credentials.id_token)
            elif credentials.code is not None and self.exchanger is not None:
                attempt = self._exchange_and_validate(self.exchanger, credentials.code)
            else:
                if credentials.code is not None:
                    logger.debug("Ignoring authorization code presented to an implicit-token deployment")
                span.add_event("challenge_issued")
                raise InvalidCredentialsError(
                    INVALID_LOGIN, challenge=self.challenge_builder.build_challenge(self.variant)
                )

            try:
                username = await attempt
            except InvalidTokenError as e:
                logger.bind(audit=True).warning(
                    f"Rejected login from {credentials.remote_address or 'unknown address'}: {e}"
                )
                raise InvalidCredentialsError(INVALID_LOGIN) from e
            except (ExchangeFailedError, KeySetUnavailableError) as e:
                logger.error(f"Identity provider unavailable during login: {e}")
                raise InvalidCredentialsError(INVALID_LOGIN) from e
            except ValidationInternalError as e:
                logger.exception(f"Unable to process ID token claims: {e}")
                raise InvalidCredentialsError(INVALID_LOGIN) from e

            return VerifiedIdentity(username=username, credentials=credentials)

    async def update_authenticated_user(
        self, identity: VerifiedIdentity, credentials: InboundCredentials
    ) -> VerifiedIdentity:
        """
        Returns the identity for a follow-up request. No update is necessary.
        """
        return identity


class AuthenticationService:
    """
    Sync facade for AuthenticationServiceAsync.

    Each call runs the async core on its own event loop with a fresh HTTP client,
    so nothing is shared between requests.
    """

    identifier = AuthenticationServiceAsync.identifier

    def __init__(
        self,
        config: OAuthProviderConfig,
        variant: FlowVariant,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the AuthenticationService.

        Args:
            config: The provider configuration.
            variant: The flow this deployment uses.
            transport: Optional transport shared by the per-call clients. It must tolerate
                being used by several clients in turn.

        Raises:
            ConfigurationMissingError: If the configuration lacks a value the flow requires.
        """
        self.config = config
        self.variant = variant
        self._transport = transport

        # Fail at startup rather than on the first request
        config.require(
            "authorization_endpoint", "jwks_endpoint", "issuer", "client_id", "redirect_uri", "username_claim_type"
        )
        if variant is FlowVariant.AUTHORIZATION_CODE:
            config.require("token_endpoint", "client_secret")

    async def _authenticate(self, credentials: InboundCredentials) -> VerifiedIdentity:
        async with build_client(self.config, self._transport) as client:
            service = AuthenticationServiceAsync(self.config, self.variant, client=client)
            return await service.authenticate(credentials)

    def authenticate(self, credentials: InboundCredentials) -> VerifiedIdentity:
        """
        Authenticates the request described by the given credentials.

        See `AuthenticationServiceAsync.authenticate`.
        """
        return anyio.run(self._authenticate, credentials)

    def build_challenge(self) -> AuthChallenge:
        """
        Returns the challenge this deployment presents to unauthenticated callers.
        """
        return ChallengeBuilder(self.config).build_challenge(self.variant)

    def update_authenticated_user(
        self, identity: VerifiedIdentity, credentials: InboundCredentials
    ) -> VerifiedIdentity:
        """
        Returns the identity for a follow-up request. No update is necessary.
        """
        return identity
