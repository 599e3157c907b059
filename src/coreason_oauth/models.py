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
Data models for the coreason-oauth package.
"""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

TOKEN_PARAMETER = "token"
CODE_PARAMETER = "code"


class FlowVariant(StrEnum):
    """
    The OAuth flow a deployment uses. The value doubles as the OAuth
    `response_type` and as the inbound request parameter name.
    """

    IMPLICIT_TOKEN = TOKEN_PARAMETER
    AUTHORIZATION_CODE = CODE_PARAMETER


class FieldType(StrEnum):
    USERNAME = "USERNAME"
    PASSWORD = "PASSWORD"
    OAUTH_TOKEN = "OAUTH_TOKEN"
    OAUTH_CODE = "OAUTH_CODE"


OAUTH_FIELD_TYPES = frozenset({FieldType.OAUTH_TOKEN, FieldType.OAUTH_CODE})


class ChallengeField(BaseModel):
    """
    A declarative description of one credential the caller must supply.
    Rendering is left to the host.

    Attributes:
        name (str): The request parameter name the field submits as.
        type (FieldType): The kind of field.
        authorization_uri (str | None): Where to send the user to obtain the value (OAuth fields only).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    type: FieldType
    authorization_uri: str | None = None


class AuthChallenge(BaseModel):
    """
    The ordered set of fields an unauthenticated caller must supply next.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    fields: tuple[ChallengeField, ...]

    @model_validator(mode="after")
    def single_oauth_field(self) -> "AuthChallenge":
        oauth_fields = [f for f in self.fields if f.type in OAUTH_FIELD_TYPES]
        if len(oauth_fields) > 1:
            raise ValueError("A challenge may carry at most one OAuth field.")
        return self

    @property
    def oauth_field(self) -> ChallengeField | None:
        return next((f for f in self.fields if f.type in OAUTH_FIELD_TYPES), None)


class InboundCredentials(BaseModel):
    """
    Credentials and request metadata supplied by the host for one request.

    Holds at most one of an ID token or an authorization code. Username and
    password are only carried for backward-compatible form submission; the
    OAuth paths never inspect them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", str_strip_whitespace=True)

    id_token: str | None = None
    code: str | None = None
    username: str | None = None
    password: SecretStr | None = None
    remote_address: str | None = None
    remote_hostname: str | None = None

    @field_validator("id_token", "code", mode="after")
    @classmethod
    def blank_as_absent(cls, v: str | None) -> str | None:
        return v or None

    @model_validator(mode="after")
    def at_most_one_oauth_credential(self) -> "InboundCredentials":
        if self.id_token is not None and self.code is not None:
            raise ValueError("Credentials may carry an ID token or an authorization code, not both.")
        return self

    @classmethod
    def from_request_parameters(
        cls,
        params: Mapping[str, Any],
        remote_address: str | None = None,
        remote_hostname: str | None = None,
    ) -> "InboundCredentials":
        """
        Builds credentials from request query/body parameters.

        When both a token and a code are present, only the token is kept.

        Args:
            params: The request parameters (e.g. a parsed query string).
            remote_address: The client address, kept for the host.
            remote_hostname: The client hostname, kept for the host.

        Returns:
            InboundCredentials: The credentials found in the request.
        """
        id_token = params.get(TOKEN_PARAMETER)
        code = params.get(CODE_PARAMETER)
        # An ID token takes precedence over an authorization code
        if isinstance(id_token, str) and id_token.strip():
            code = None
        return cls(
            id_token=id_token,
            code=code,
            username=params.get("username"),
            password=params.get("password"),
            remote_address=remote_address,
            remote_hostname=remote_hostname,
        )

    def __repr__(self) -> str:
        # Raw credentials MUST NOT be logged
        return (
            f"InboundCredentials(id_token={'<REDACTED>' if self.id_token else None}, "
            f"code={'<REDACTED>' if self.code else None}, "
            f"remote_address={self.remote_address!r})"
        )

    def __str__(self) -> str:
        return self.__repr__()


class TokenResponse(BaseModel):
    """
    Response from the token endpoint after a successful code exchange.

    Attributes:
        access_token (str | None): The access token issued by the authorization server.
        token_type (str | None): The type of the token, expected to be "Bearer".
        expires_in (int | None): The lifetime in seconds of the access token.
        id_token (str | None): The signed ID token carrying the user's identity.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = Field(default=None, ge=0)
    id_token: str | None = None


class VerifiedIdentity(BaseModel):
    """
    The result of a successful authentication.

    This model is frozen (immutable) to ensure integrity as it is handed to the host.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    username: str = Field(..., min_length=1, description="The verified username claim value.")
    credentials: InboundCredentials = Field(..., description="The credentials the identity was established from.")

    def __repr__(self) -> str:
        # PII fields MUST be redacted in __repr__
        return f"VerifiedIdentity(username='<REDACTED>', credentials={self.credentials!r})"

    def __str__(self) -> str:
        return self.__repr__()
