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
Custom exceptions for the coreason-oauth package.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coreason_oauth.models import AuthChallenge


class CoreasonOAuthError(Exception):
    """Base exception for all coreason-oauth errors."""


class ConfigurationError(CoreasonOAuthError):
    """Raised when the provider configuration is unusable. Fatal at startup."""


class ConfigurationMissingError(ConfigurationError):
    """Raised when a required configuration value is absent or blank."""


class InvalidCredentialsError(CoreasonOAuthError):
    """
    Raised when the caller must be denied access.

    Carries an optional challenge describing the credentials the caller should
    supply next. The message is always safe to show to the end user.
    """

    def __init__(self, message: str = "Invalid login.", challenge: "AuthChallenge | None" = None) -> None:
        super().__init__(message)
        self.challenge = challenge


class ExchangeFailedError(CoreasonOAuthError):
    """Raised when the token endpoint could not be reached or rejected the exchange."""


class KeySetUnavailableError(CoreasonOAuthError):
    """Raised when the provider's JSON Web Key Set could not be retrieved."""


class InvalidTokenError(CoreasonOAuthError):
    """
    Raised when an ID token is rejected (bad signature, expired, wrong issuer or
    audience, missing username claim, etc.).
    """


class TokenExpiredError(InvalidTokenError):
    """Raised when the provided token has expired."""


class InvalidAudienceError(InvalidTokenError):
    """Raised when the token's audience does not contain the client ID."""


class InvalidIssuerError(InvalidTokenError):
    """Raised when the token's issuer does not match the configured issuer."""


class SignatureVerificationError(InvalidTokenError):
    """Raised when the token's signature cannot be verified."""


class ValidationInternalError(CoreasonOAuthError):
    """Raised when claims cannot be read after the signature was verified."""


class OversizedResponseError(CoreasonOAuthError):
    """Raised when an HTTP response is too large."""
