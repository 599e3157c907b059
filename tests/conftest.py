# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oauth

import os
import time
from collections.abc import Callable, Generator
from typing import Any

import pytest
from authlib.jose import JsonWebKey, jwt
from pydantic import SecretStr

from coreason_oauth.config import OAuthProviderConfig

ISSUER = "https://idp.example/"
CLIENT_ID = "abc123"
AUTHORIZATION_ENDPOINT = "https://idp.example/authorize"
TOKEN_ENDPOINT = "https://idp.example/oauth/token"
JWKS_ENDPOINT = "https://idp.example/.well-known/jwks.json"
REDIRECT_URI = "https://app.example/callback"


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """
    Removes any COREASON_OAUTH_* variables from the environment so that tests only
    see the configuration they set up themselves.
    """
    for name in list(os.environ):
        if name.upper().startswith("COREASON_OAUTH_"):
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def config() -> OAuthProviderConfig:
    return OAuthProviderConfig(
        authorization_endpoint=AUTHORIZATION_ENDPOINT,
        token_endpoint=TOKEN_ENDPOINT,
        jwks_endpoint=JWKS_ENDPOINT,
        issuer=ISSUER,
        client_id=CLIENT_ID,
        client_secret=SecretStr("s3cret"),
        redirect_uri=REDIRECT_URI,
        username_claim_type="email",
    )


@pytest.fixture(scope="session")
def key_pair() -> Any:
    # Generate a key pair for signing test tokens
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def other_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def jwks(key_pair: Any) -> dict[str, Any]:
    # Return public key in JWKS format
    return {"keys": [key_pair.as_dict()]}


@pytest.fixture
def valid_claims() -> dict[str, Any]:
    now = int(time.time())
    return {
        "sub": "user123",
        "email": "alice@example.com",
        "aud": CLIENT_ID,
        "iss": ISSUER,
        "exp": now + 3600,
        "iat": now,
    }


@pytest.fixture
def make_token(key_pair: Any, valid_claims: dict[str, Any]) -> Callable[..., str]:
    """
    Returns a factory minting signed ID tokens. Keyword arguments override claims;
    a value of None removes the claim.
    """

    def _make(key: Any = None, headers: dict[str, Any] | None = None, **overrides: Any) -> str:
        signing_key = key or key_pair
        claims = dict(valid_claims)
        for name, value in overrides.items():
            if value is None:
                claims.pop(name, None)
            else:
                claims[name] = value
        if headers is None:
            headers = {"alg": "RS256", "kid": signing_key.as_dict()["kid"]}
        token: bytes = jwt.encode(headers, claims, signing_key)
        return token.decode("utf-8")

    return _make
