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
ClaimsValidator component for validating ID token signatures and claims.
"""

import hashlib
import hmac
import time
from typing import Any, cast

from authlib.jose import JsonWebToken
from authlib.jose.errors import (
    BadSignatureError,
    ExpiredTokenError,
    InvalidClaimError,
    JoseError,
    MissingClaimError,
)
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_oauth.exceptions import (
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidTokenError,
    SignatureVerificationError,
    TokenExpiredError,
    ValidationInternalError,
)
from coreason_oauth.jwks_provider import JWKSProvider
from coreason_oauth.utils.logger import logger

tracer = trace.get_tracer(__name__)


class ClaimsValidator:
    """
    Validates ID tokens against the IdP's JWKS and extracts the username claim.

    Attributes:
        jwks_provider (JWKSProvider): Source of the IdP's signing keys.
        issuer (str): The exact expected issuer claim.
        audience (str): The client ID the audience claim must contain.
        username_claim (str): The claim holding the username.
    """

    def __init__(
        self,
        jwks_provider: JWKSProvider,
        issuer: str,
        audience: str,
        username_claim: str,
        pii_salt: SecretStr,
        allowed_algorithms: list[str],
        leeway: int = 30,
        max_future_validity: int = 300 * 60,
    ) -> None:
        """
        Initialize the ClaimsValidator.

        Args:
            jwks_provider: The JWKSProvider instance to fetch keys from.
            issuer: The expected issuer (iss) claim.
            audience: The client ID expected in the audience (aud) claim.
            username_claim: The name of the claim carrying the username.
            pii_salt: Salt for anonymizing PII in logs and traces.
            allowed_algorithms: List of allowed JWT signing algorithms.
            leeway: Acceptable clock skew in seconds. Defaults to 30.
            max_future_validity: Largest accepted distance of 'exp' from now, in seconds. Defaults to 300 minutes.
        """
        self.jwks_provider = jwks_provider
        self.issuer = issuer
        self.audience = audience
        self.username_claim = username_claim
        self.pii_salt = pii_salt
        self.allowed_algorithms = allowed_algorithms
        self.leeway = leeway
        self.max_future_validity = max_future_validity
        # Use a specific JsonWebToken instance to enforce allowed algorithms and reject others
        self.jwt = JsonWebToken(self.allowed_algorithms)
        self.claims_options: dict[str, Any] = {
            "exp": {"essential": True},
            "nbf": {"essential": False},
            "sub": {"essential": True},
            "iss": {"essential": True, "value": self.issuer},
            "aud": {"essential": True, "value": self.audience},
        }

    def _anonymize(self, value: str) -> str:
        """
        Anonymizes a value using HMAC-SHA256 with the configured salt.
        """
        return hmac.new(
            self.pii_salt.get_secret_value().encode("utf-8"),
            value.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _decode(self, token: str, jwks: dict[str, Any]) -> Any:
        # Cast self.jwt to Any to bypass MyPy overload confusion
        jwt_any = cast("Any", self.jwt)
        claims = jwt_any.decode(token, jwks, claims_options=self.claims_options)
        claims.validate(leeway=self.leeway)
        return claims

    def _check_future_validity(self, claims: Any) -> None:
        exp = claims["exp"]
        if exp - time.time() > self.max_future_validity + self.leeway:
            raise InvalidTokenError("Token expiration is too far in the future")

    def _extract_username(self, claims: Any) -> str:
        try:
            payload = dict(claims)
        except (TypeError, ValueError) as e:
            raise ValidationInternalError(f"Unable to parse token claims: {e}") from e

        username = payload.get(self.username_claim)
        if username is None or username == "":
            raise InvalidTokenError("Username missing from token")
        if not isinstance(username, str):
            raise ValidationInternalError(
                f"Claim '{self.username_claim}' is not a string (got {type(username).__name__})"
            )
        return username

    async def validate(self, id_token: str) -> str:
        """
        Validates the ID token signature and claims and returns the username.

        Emits an OpenTelemetry span `validate_id_token`.
        Sets attribute `enduser.id` (anonymized) on success.

        Args:
            id_token: The compact-serialized ID token.

        Returns:
            str: The value of the configured username claim.

        Raises:
            TokenExpiredError: If the token has expired.
            InvalidAudienceError: If the audience does not contain the client ID.
            InvalidIssuerError: If the issuer does not match.
            SignatureVerificationError: If the signature is invalid or the key is unknown.
            InvalidTokenError: If the token is malformed, a claim is missing or invalid,
                or the username claim is absent.
            ValidationInternalError: If claims cannot be read after signature verification.
            KeySetUnavailableError: If the key set cannot be fetched.
        """
        with tracer.start_as_current_span("validate_id_token") as span:
            token = id_token.strip()

            # A compact JWS has exactly three segments; do not hit the network for anything else
            if token.count(".") != 2:
                span.set_status(Status(StatusCode.ERROR, "malformed token"))
                raise InvalidTokenError("Token is not a well-formed signed JWT")

            jwks = await self.jwks_provider.get_jwks()

            try:
                claims = self._decode(token, jwks)
                self._check_future_validity(claims)
            except ExpiredTokenError as e:
                logger.warning("Validation failed: Token expired")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise TokenExpiredError(f"Token has expired: {e}") from e
            except InvalidClaimError as e:
                logger.warning(f"Validation failed: Invalid claim: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                if "aud" in str(e):
                    raise InvalidAudienceError(f"Invalid audience: {e}") from e
                if "iss" in str(e):
                    raise InvalidIssuerError(f"Invalid issuer: {e}") from e
                raise InvalidTokenError(f"Invalid claim: {e}") from e
            except MissingClaimError as e:
                logger.warning(f"Validation failed: Missing claim: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise InvalidTokenError(f"Missing claim: {e}") from e
            except BadSignatureError as e:
                logger.error("Validation failed: Bad signature")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise SignatureVerificationError(f"Invalid signature: {e}") from e
            except JoseError as e:
                logger.warning(f"Validation failed: JOSE error: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise InvalidTokenError(f"Token validation failed: {e}") from e
            except InvalidTokenError as e:
                logger.warning(f"Validation failed: {e}")
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            except ValueError as e:
                # Authlib raises ValueError for "Invalid JSON Web Key Set" when no key matches the 'kid'
                logger.error(f"Validation failed: No usable key: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise SignatureVerificationError(f"Invalid signature or key not found: {e}") from e

            try:
                username = self._extract_username(claims)
            except (InvalidTokenError, ValidationInternalError) as e:
                logger.warning(f"Validation failed: {e}")
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            user_hash = self._anonymize(username)
            logger.info(f"ID token validated for user {user_hash}")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))

            return username
