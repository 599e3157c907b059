# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oauth

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from coreason_oauth.challenge import ChallengeBuilder
from coreason_oauth.config import OAuthProviderConfig
from coreason_oauth.exceptions import (
    ConfigurationMissingError,
    ExchangeFailedError,
    InvalidCredentialsError,
    InvalidTokenError,
    KeySetUnavailableError,
    ValidationInternalError,
)
from coreason_oauth.models import FlowVariant, InboundCredentials, VerifiedIdentity
from coreason_oauth.service import AuthenticationService, AuthenticationServiceAsync

TOKEN_PATH = "/oauth/token"
JWKS_PATH = "/.well-known/jwks.json"


class FakeIdentityProvider:
    """Serves the JWKS and token endpoints through httpx.MockTransport."""

    def __init__(self, jwks: dict[str, Any], id_token: str | None = None) -> None:
        self.jwks = jwks
        self.id_token = id_token
        self.token_status = 200
        self.jwks_status = 200
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == JWKS_PATH:
            return httpx.Response(self.jwks_status, json=self.jwks)
        if request.url.path == TOKEN_PATH:
            body: dict[str, Any] = {"access_token": "access-abc", "token_type": "Bearer", "expires_in": 3600}
            if self.id_token is not None:
                body["id_token"] = self.id_token
            return httpx.Response(self.token_status, json=body)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


class TestAuthenticationServiceAsync:
    @pytest.fixture
    def idp(self, jwks: dict[str, Any]) -> FakeIdentityProvider:
        return FakeIdentityProvider(jwks)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("variant", list(FlowVariant))
    async def test_no_credentials_yields_challenge(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider, variant: FlowVariant
    ) -> None:
        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, variant, client=client)
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(username="alice"))

        assert str(exc.value) == "Invalid login."
        assert exc.value.challenge == ChallengeBuilder(config).build_challenge(variant)
        # A challenge never needs the provider
        assert idp.requests == []

    @pytest.mark.asyncio
    async def test_implicit_flow_token_success(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider, make_token: Callable[..., str]
    ) -> None:
        credentials = InboundCredentials(id_token=make_token(), remote_address="10.0.0.1")

        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client)
            identity = await service.authenticate(credentials)

        assert isinstance(identity, VerifiedIdentity)
        assert identity.username == "alice@example.com"
        assert identity.credentials is credentials
        assert idp.paths() == [JWKS_PATH]

    @pytest.mark.asyncio
    async def test_implicit_flow_ignores_code(self, config: OAuthProviderConfig, idp: FakeIdentityProvider) -> None:
        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client)
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(code="some-code"))

        assert exc.value.challenge is not None
        assert idp.requests == []

    @pytest.mark.asyncio
    async def test_invalid_token_yields_invalid_login_without_challenge(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider, make_token: Callable[..., str]
    ) -> None:
        token = make_token(iss="https://evil.example/")

        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client)
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(id_token=token))

        assert exc.value.challenge is None
        assert str(exc.value) == "Invalid login."
        assert isinstance(exc.value.__cause__, InvalidTokenError)

    @pytest.mark.asyncio
    async def test_code_flow_round_trip_matches_direct_validation(
        self, config: OAuthProviderConfig, jwks: dict[str, Any], make_token: Callable[..., str]
    ) -> None:
        id_token = make_token()
        idp = FakeIdentityProvider(jwks, id_token=id_token)

        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.AUTHORIZATION_CODE, client=client)
            identity = await service.authenticate(InboundCredentials(code="the-code"))
            direct = await service.validator.validate(id_token)

        assert identity.username == "alice@example.com"
        assert identity.username == direct
        assert idp.paths()[:2] == [TOKEN_PATH, JWKS_PATH]

    @pytest.mark.asyncio
    async def test_code_flow_accepts_direct_token(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider, make_token: Callable[..., str]
    ) -> None:
        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.AUTHORIZATION_CODE, client=client)
            identity = await service.authenticate(InboundCredentials(id_token=make_token()))

        assert identity.username == "alice@example.com"
        assert TOKEN_PATH not in idp.paths()

    @pytest.mark.asyncio
    async def test_code_flow_exchange_failure_never_yields_identity(
        self, config: OAuthProviderConfig, jwks: dict[str, Any], make_token: Callable[..., str]
    ) -> None:
        idp = FakeIdentityProvider(jwks, id_token=make_token())
        idp.token_status = 400

        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.AUTHORIZATION_CODE, client=client)
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(code="bad-code"))

        assert exc.value.challenge is None
        assert isinstance(exc.value.__cause__, ExchangeFailedError)
        # The key set is never consulted when the exchange fails
        assert idp.paths() == [TOKEN_PATH]

    @pytest.mark.asyncio
    async def test_code_flow_missing_id_token(self, config: OAuthProviderConfig, idp: FakeIdentityProvider) -> None:
        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.AUTHORIZATION_CODE, client=client)
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(code="the-code"))

        assert isinstance(exc.value.__cause__, InvalidTokenError)

    @pytest.mark.asyncio
    async def test_key_set_unavailable(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider, make_token: Callable[..., str]
    ) -> None:
        idp.jwks_status = 503

        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client)
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(id_token=make_token()))

        assert isinstance(exc.value.__cause__, KeySetUnavailableError)

    @pytest.mark.asyncio
    async def test_internal_validation_error_collapses_to_invalid_login(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider, make_token: Callable[..., str]
    ) -> None:
        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client)
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(id_token=make_token(email=12345)))

        assert isinstance(exc.value.__cause__, ValidationInternalError)

    @pytest.mark.asyncio
    async def test_provider_error_text_not_exposed(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider
    ) -> None:
        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.AUTHORIZATION_CODE, client=client)
            service.exchanger.exchange = AsyncMock(  # type: ignore[union-attr, method-assign]
                side_effect=ExchangeFailedError("upstream said: database password is hunter2")
            )
            with pytest.raises(InvalidCredentialsError) as exc:
                await service.authenticate(InboundCredentials(code="the-code"))

        assert "hunter2" not in str(exc.value)

    @pytest.mark.asyncio
    async def test_requests_are_independent(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider, make_token: Callable[..., str]
    ) -> None:
        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client)
            first = await service.authenticate(InboundCredentials(id_token=make_token(email="a@example.com")))
            with pytest.raises(InvalidCredentialsError):
                await service.authenticate(InboundCredentials())
            second = await service.authenticate(InboundCredentials(id_token=make_token(email="b@example.com")))

        assert (first.username, second.username) == ("a@example.com", "b@example.com")

    @pytest.mark.asyncio
    async def test_update_authenticated_user_is_identity(
        self, config: OAuthProviderConfig, idp: FakeIdentityProvider
    ) -> None:
        identity = VerifiedIdentity(username="alice", credentials=InboundCredentials())

        async with idp.client() as client:
            service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client)
            assert await service.update_authenticated_user(identity, InboundCredentials()) is identity

    def test_code_flow_requires_client_secret(self, config: OAuthProviderConfig) -> None:
        config = config.model_copy(update={"client_secret": None})

        with pytest.raises(ConfigurationMissingError, match="client_secret"):
            AuthenticationServiceAsync(config, FlowVariant.AUTHORIZATION_CODE, client=httpx.AsyncClient())

    def test_implicit_flow_does_not_require_token_endpoint(self, config: OAuthProviderConfig) -> None:
        config = config.model_copy(update={"client_secret": None, "token_endpoint": None})

        service = AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=httpx.AsyncClient())
        assert service.exchanger is None

    @pytest.mark.asyncio
    async def test_internal_client_closed_on_exit(self, config: OAuthProviderConfig) -> None:
        async with AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN) as service:
            client = service._client
            assert not client.is_closed

        assert client.is_closed

    @pytest.mark.asyncio
    async def test_external_client_left_open(self, config: OAuthProviderConfig) -> None:
        async with httpx.AsyncClient() as client:
            async with AuthenticationServiceAsync(config, FlowVariant.IMPLICIT_TOKEN, client=client):
                pass
            assert not client.is_closed

    def test_identifier(self) -> None:
        assert AuthenticationServiceAsync.identifier == "oauth"
        assert AuthenticationService.identifier == "oauth"


class TestAuthenticationServiceSync:
    def test_sync_round_trip(
        self, config: OAuthProviderConfig, jwks: dict[str, Any], make_token: Callable[..., str]
    ) -> None:
        idp = FakeIdentityProvider(jwks, id_token=make_token())
        service = AuthenticationService(config, FlowVariant.AUTHORIZATION_CODE, transport=idp.transport)

        identity = service.authenticate(InboundCredentials(code="the-code"))

        assert identity.username == "alice@example.com"

    def test_sync_challenge(self, config: OAuthProviderConfig, jwks: dict[str, Any]) -> None:
        idp = FakeIdentityProvider(jwks)
        service = AuthenticationService(config, FlowVariant.IMPLICIT_TOKEN, transport=idp.transport)

        with pytest.raises(InvalidCredentialsError) as exc:
            service.authenticate(InboundCredentials())

        assert exc.value.challenge == service.build_challenge()

    def test_sync_calls_are_independent(
        self, config: OAuthProviderConfig, jwks: dict[str, Any], make_token: Callable[..., str]
    ) -> None:
        idp = FakeIdentityProvider(jwks)
        service = AuthenticationService(config, FlowVariant.IMPLICIT_TOKEN, transport=idp.transport)

        for name in ("a@example.com", "b@example.com"):
            identity = service.authenticate(InboundCredentials(id_token=make_token(email=name)))
            assert identity.username == name

        # One fresh key set fetch per request
        assert idp.paths() == [JWKS_PATH, JWKS_PATH]

    def test_sync_invalid_token(self, config: OAuthProviderConfig, jwks: dict[str, Any]) -> None:
        service = AuthenticationService(
            config, FlowVariant.IMPLICIT_TOKEN, transport=FakeIdentityProvider(jwks).transport
        )

        with pytest.raises(InvalidCredentialsError) as exc:
            service.authenticate(InboundCredentials(id_token="garbage"))

        assert exc.value.challenge is None

    def test_sync_configuration_checked_at_startup(self, config: OAuthProviderConfig) -> None:
        config = config.model_copy(update={"token_endpoint": ""})

        with pytest.raises(ConfigurationMissingError, match="token_endpoint"):
            AuthenticationService(config, FlowVariant.AUTHORIZATION_CODE)

    @pytest.mark.parametrize("variant", list(FlowVariant))
    def test_username_claim_type_checked_at_startup(self, config: OAuthProviderConfig, variant: FlowVariant) -> None:
        config = config.model_copy(update={"username_claim_type": ""})

        with pytest.raises(ConfigurationMissingError, match="username_claim_type"):
            AuthenticationService(config, variant)

    def test_sync_update_authenticated_user(self, config: OAuthProviderConfig) -> None:
        service = AuthenticationService(config, FlowVariant.IMPLICIT_TOKEN)
        identity = VerifiedIdentity(username="alice", credentials=InboundCredentials())

        assert service.update_authenticated_user(identity, InboundCredentials()) is identity
