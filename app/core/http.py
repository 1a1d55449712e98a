"""Outbound HTTP helpers shared by every provider integration."""

import logging
from typing import Any

import httpx

from app.core.exceptions import ErrorKind, ProviderError

logger = logging.getLogger(__name__)


def safe_json(response: httpx.Response) -> dict[str, Any]:
    """Response body as a dict; empty when the provider sent something else."""
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


async def send_request(
    client: httpx.AsyncClient,
    label: str,
    method: str,
    url: str,
    *,
    timeout: float,
    **kwargs,
) -> httpx.Response:
    """Sends one provider request, mapping transport failures to ProviderError.

    Non-2xx responses are returned as-is; each caller maps them for its provider.
    """
    try:
        return await client.request(method, url, timeout=httpx.Timeout(timeout), **kwargs)
    except httpx.TimeoutException as e:
        logger.warning(f"{label} request timed out after {timeout}s")
        raise ProviderError(
            ErrorKind.TIMEOUT,
            f"Request timeout. {label} is taking too long to respond.",
            diagnostic=repr(e),
        ) from e
    except httpx.RequestError as e:
        logger.warning(f"{label} request failed: {e!r}")
        raise ProviderError(
            ErrorKind.NETWORK_ERROR,
            f"Network error connecting to {label}. Please try again.",
            diagnostic=repr(e),
        ) from e
