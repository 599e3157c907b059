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
JWKSProvider component for resolving the identity provider's signing keys.
"""

import time
from typing import Any

import anyio
import httpx

from coreason_oauth.exceptions import CoreasonOAuthError, KeySetUnavailableError
from coreason_oauth.transport import safe_json_fetch
from coreason_oauth.utils.logger import logger


class JWKSProvider:
    """
    Fetches the Identity Provider's JSON Web Key Set.

    With the default `cache_ttl` of 0 every call fetches the key set, so rotated
    keys are always honoured. A positive `cache_ttl` keeps the last key set for at
    most that many seconds.

    Attributes:
        jwks_uri (str): The JWKS endpoint.
        cache_ttl (float): The cache time-to-live in seconds.
    """

    def __init__(self, jwks_uri: str, client: httpx.AsyncClient, cache_ttl: float = 0.0) -> None:
        """
        Initialize the JWKSProvider.

        Args:
            jwks_uri: The JWKS endpoint (e.g., https://idp.example/.well-known/jwks.json).
            client: The async HTTP client to use for requests.
            cache_ttl: Seconds to keep a fetched key set. Defaults to 0 (no caching).
        """
        self.jwks_uri = jwks_uri
        self.client = client
        self.cache_ttl = cache_ttl
        self._jwks_cache: dict[str, Any] | None = None
        self._last_update: float = 0.0
        self._lock: anyio.Lock | None = None

    async def _fetch_jwks(self) -> dict[str, Any]:
        """
        Fetches the JWKS. No retries are attempted.

        Returns:
            dict[str, Any]: The JWKS dictionary.

        Raises:
            KeySetUnavailableError: If the request fails or the body is not a key set.
        """
        try:
            data = await safe_json_fetch(self.client, self.jwks_uri, headers={"Accept": "application/json"})
        except (CoreasonOAuthError, httpx.HTTPError) as e:
            logger.error(f"Failed to fetch JWKS from {self.jwks_uri}: {e}")
            raise KeySetUnavailableError(f"Failed to fetch JWKS from {self.jwks_uri}") from e

        if not isinstance(data, dict) or not isinstance(data.get("keys"), list):
            logger.error(f"Invalid JSON Web Key Set returned by {self.jwks_uri}")
            raise KeySetUnavailableError(f"Invalid JSON Web Key Set from {self.jwks_uri}")

        return data

    def _cached(self, current_time: float) -> dict[str, Any] | None:
        if self._jwks_cache is not None and (current_time - self._last_update) < self.cache_ttl:
            return self._jwks_cache
        return None

    async def get_jwks(self) -> dict[str, Any]:
        """
        Returns the JWKS, using the cache if enabled and still fresh.

        Returns:
            dict[str, Any]: The JWKS dictionary.

        Raises:
            KeySetUnavailableError: If fetching fails.
        """
        if self.cache_ttl <= 0:
            return await self._fetch_jwks()

        if self._lock is None:
            self._lock = anyio.Lock()

        # Double-checked locking (Check 1: No lock)
        cached = self._cached(time.time())
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._cached(time.time())
            if cached is not None:
                return cached

            jwks = await self._fetch_jwks()
            self._jwks_cache = jwks
            self._last_update = time.time()
            return jwks
