"""
HTTP client helper with standardized timeout configuration.

All CRM and calendar calls go through create_httpx_client() so slow upstreams
can't block a webhook handler indefinitely.
"""

import httpx

from studio_assistant.core.config import settings


def get_httpx_timeout() -> httpx.Timeout:
    """
    Get standardized timeout configuration for HTTP clients.

    Returns:
        httpx.Timeout with appropriate timeout values for webhook handlers
    """
    return httpx.Timeout(
        10.0,  # Default timeout for all operations
        connect=5.0,  # Time to establish connection
        read=10.0,  # Time to read response
        write=5.0,  # Time to write request
        pool=5.0,  # Time to get connection from pool
    )


def crm_headers(api_version: str | None = None) -> dict[str, str]:
    """Auth + version headers for the CRM REST API."""
    return {
        "Authorization": f"Bearer {settings.crm_api_token}",
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Version": api_version or settings.crm_api_version,
    }


def create_httpx_client(api_version: str | None = None) -> httpx.AsyncClient:
    """
    Create an httpx.AsyncClient bound to the CRM base URL with standardized timeouts.

    Returns:
        httpx.AsyncClient configured with appropriate timeouts and headers
    """
    return httpx.AsyncClient(
        base_url=settings.crm_base_url,
        headers=crm_headers(api_version),
        timeout=get_httpx_timeout(),
    )
