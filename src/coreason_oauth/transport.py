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
HTTP helpers for talking to the identity provider.
"""

import json
from collections.abc import Mapping
from typing import Any

import httpx

from coreason_oauth.config import OAuthProviderConfig
from coreason_oauth.exceptions import CoreasonOAuthError, OversizedResponseError
from coreason_oauth.utils.logger import logger

MAX_RESPONSE_BYTES = 1_000_000


def build_client(
    config: OAuthProviderConfig, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """
    Creates the async client used for IdP calls.

    Args:
        config: The provider configuration (for the optional timeout override).
        transport: Optional transport, e.g. for testing or custom TLS.

    Returns:
        httpx.AsyncClient: A client the caller is responsible for closing.
    """
    kwargs: dict[str, Any] = {"transport": transport}
    if config.http_timeout is not None:
        kwargs["timeout"] = config.http_timeout
    return httpx.AsyncClient(**kwargs)


async def safe_json_fetch(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    data: Mapping[str, str] | None = None,
    headers: Mapping[str, str] | None = None,
    max_bytes: int = MAX_RESPONSE_BYTES,
) -> Any:
    """
    Performs a request and parses the JSON body, refusing oversized responses.

    The body is streamed so that a hostile or broken endpoint cannot exhaust memory.

    Args:
        client: The async HTTP client.
        url: The URL to request.
        method: The HTTP method.
        data: Form fields, sent as application/x-www-form-urlencoded.
        headers: Extra request headers.
        max_bytes: The largest body accepted.

    Returns:
        Any: The decoded JSON document.

    Raises:
        httpx.HTTPError: On transport failure or a non-success status.
        OversizedResponseError: If the body exceeds `max_bytes`.
        CoreasonOAuthError: If the body is not valid JSON.
    """
    async with client.stream(method, url, data=data, headers=headers) as response:
        response.raise_for_status()

        content_length = response.headers.get("Content-Length")
        if content_length:
            try:
                if int(content_length) > max_bytes:
                    raise OversizedResponseError(f"Response from {url} too large")
            except ValueError:
                pass

        content = bytearray()
        async for chunk in response.aiter_bytes():
            content.extend(chunk)
            if len(content) > max_bytes:
                raise OversizedResponseError(f"Response from {url} too large")

    try:
        return json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.debug(f"Non-JSON response from {url}")
        raise CoreasonOAuthError(f"Invalid JSON response from {url}") from e
