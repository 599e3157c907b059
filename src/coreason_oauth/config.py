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
Configuration for the coreason-oauth package.
"""

from typing import Any

from pydantic import Field, SecretStr, ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_oauth.exceptions import ConfigurationError, ConfigurationMissingError

_MISSING_ERROR_TYPES = frozenset({"missing", "string_too_short"})


class OAuthProviderConfig(BaseSettings):
    """
    Configuration settings for the OAuth identity provider.

    Attributes:
        authorization_endpoint (str): Where users are sent to log in.
        jwks_endpoint (str): The provider's JSON Web Key Set URL.
        issuer (str): The exact issuer ('iss') expected in ID tokens.
        client_id (str): The OAuth client ID. Also the expected audience.
        redirect_uri (str): Where the provider sends users after login.
        token_endpoint (str | None): Token endpoint. Required for the code flow.
        client_secret (SecretStr | None): Client secret. Required for the code flow.
        username_claim_type (str): The claim holding the username.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_OAUTH_",
        case_sensitive=False,
        str_strip_whitespace=True,
        frozen=True,
    )

    unsafe_local_dev: bool = False
    authorization_endpoint: str = Field(..., min_length=1)
    jwks_endpoint: str = Field(..., min_length=1)
    issuer: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    token_endpoint: str | None = None
    client_secret: SecretStr | None = None
    username_claim_type: str = Field(..., min_length=1)

    allowed_algorithms: list[str] = Field(default_factory=lambda: ["RS256"], min_length=1)
    clock_skew_leeway: int = Field(default=30, ge=0, description="Allowed clock skew in seconds.")
    max_token_validity_minutes: int = Field(
        default=300, gt=0, description="How far in the future an ID token may expire."
    )
    jwks_cache_ttl: float = Field(
        default=0.0, ge=0, description="Seconds to keep a fetched key set. 0 fetches on every validation."
    )
    http_timeout: float | None = Field(
        default=None, gt=0, description="Timeout for IdP calls. None keeps the httpx default."
    )
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")

    @field_validator("authorization_endpoint", "jwks_endpoint", "token_endpoint", mode="after")
    @classmethod
    def validate_https(cls, v: str | None, info: ValidationInfo) -> str | None:
        """
        Ensures that provider endpoints use HTTPS, unless strictly opted out for local dev.
        """
        if v and v.startswith("http://") and not info.data.get("unsafe_local_dev", False):
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return v

    def require(self, *names: str) -> None:
        """
        Ensures the named fields carry a non-empty value.

        Args:
            names: Field names required by the caller's flow.

        Raises:
            ConfigurationMissingError: If any of the fields is unset or blank.
        """
        missing = []
        for name in names:
            value = getattr(self, name)
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        if missing:
            raise ConfigurationMissingError(f"Missing required configuration: {', '.join(missing)}")


def load_config(**overrides: Any) -> OAuthProviderConfig:
    """
    Loads the provider configuration from the environment.

    Args:
        overrides: Explicit values taking precedence over the environment.

    Returns:
        OAuthProviderConfig: The validated configuration.

    Raises:
        ConfigurationMissingError: If a required value is missing or blank.
        ConfigurationError: If a value is present but invalid.
    """
    try:
        return OAuthProviderConfig(**overrides)
    except ValidationError as e:
        errors = e.errors()
        missing = [str(err["loc"][0]) for err in errors if err["type"] in _MISSING_ERROR_TYPES and err["loc"]]
        if missing:
            raise ConfigurationMissingError(f"Missing required configuration: {', '.join(missing)}") from e
        raise ConfigurationError(f"Invalid configuration: {e}") from e
