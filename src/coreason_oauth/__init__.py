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
OAuth / OpenID Connect login for host applications: challenge, code exchange and ID token validation.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .challenge import ChallengeBuilder
from .config import OAuthProviderConfig, load_config
from .exceptions import (
    ConfigurationError,
    ConfigurationMissingError,
    CoreasonOAuthError,
    ExchangeFailedError,
    InvalidCredentialsError,
    InvalidTokenError,
    KeySetUnavailableError,
    ValidationInternalError,
)
from .jwks_provider import JWKSProvider
from .models import AuthChallenge, FlowVariant, InboundCredentials, TokenResponse, VerifiedIdentity
from .service import AuthenticationService, AuthenticationServiceAsync
from .token_exchanger import TokenExchanger
from .validator import ClaimsValidator

__all__ = [
    "AuthChallenge",
    "AuthenticationService",
    "AuthenticationServiceAsync",
    "ChallengeBuilder",
    "ClaimsValidator",
    "ConfigurationError",
    "ConfigurationMissingError",
    "CoreasonOAuthError",
    "ExchangeFailedError",
    "FlowVariant",
    "InboundCredentials",
    "InvalidCredentialsError",
    "InvalidTokenError",
    "JWKSProvider",
    "KeySetUnavailableError",
    "OAuthProviderConfig",
    "TokenExchanger",
    "TokenResponse",
    "ValidationInternalError",
    "VerifiedIdentity",
    "load_config",
]
