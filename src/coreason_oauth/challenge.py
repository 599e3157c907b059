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
ChallengeBuilder component for describing the credentials an unauthenticated caller must supply.
"""

from urllib.parse import quote

from coreason_oauth.config import OAuthProviderConfig
from coreason_oauth.exceptions import ConfigurationError
from coreason_oauth.models import AuthChallenge, ChallengeField, FieldType, FlowVariant

SCOPE = "openid email profile"

USERNAME_FIELD = ChallengeField(name="username", type=FieldType.USERNAME)
PASSWORD_FIELD = ChallengeField(name="password", type=FieldType.PASSWORD)


def _encode(value: str) -> str:
    try:
        return quote(value, safe="")
    except UnicodeEncodeError as e:
        raise ConfigurationError(f"Unable to percent-encode configuration value: {e}") from e


class ChallengeBuilder:
    """
    Builds the challenge that sends the user to the IdP's authorization endpoint.

    The output is a pure function of the configuration and the flow variant.
    """

    def __init__(self, config: OAuthProviderConfig) -> None:
        self.config = config

    def authorization_uri(self, variant: FlowVariant) -> str:
        """
        Builds the authorization request URI for the given flow.

        Args:
            variant: The flow variant. Its value is used as the `response_type`.

        Returns:
            str: The full URI the user should be sent to.

        Raises:
            ConfigurationError: If a configuration value cannot be percent-encoded.
        """
        return (
            f"{self.config.authorization_endpoint}"
            f"?scope={_encode(SCOPE)}"
            f"&response_type={variant.value}"
            f"&client_id={_encode(self.config.client_id)}"
            f"&redirect_uri={_encode(self.config.redirect_uri)}"
        )

    def build_challenge(self, variant: FlowVariant) -> AuthChallenge:
        """
        Builds the challenge for the given flow.

        The implicit-token flow yields a single token field. The authorization-code
        flow also carries username and password fields for UI backward compatibility.

        Args:
            variant: The flow variant.

        Returns:
            AuthChallenge: The ordered field descriptors.
        """
        uri = self.authorization_uri(variant)

        if variant is FlowVariant.IMPLICIT_TOKEN:
            return AuthChallenge(
                fields=(ChallengeField(name=variant.value, type=FieldType.OAUTH_TOKEN, authorization_uri=uri),)
            )

        return AuthChallenge(
            fields=(
                USERNAME_FIELD,
                PASSWORD_FIELD,
                ChallengeField(name=variant.value, type=FieldType.OAUTH_CODE, authorization_uri=uri),
            )
        )
