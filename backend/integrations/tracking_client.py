"""
Tracking Provider Client

Thin transport client for the multi-carrier tracking provider. Returns
the response's "data" document untouched; classification and parsing
happen in tracking_parser.py.
"""

from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.carriers import CarrierDescriptor
from core import config


class TrackingProviderError(RuntimeError):
    """Transport-level failure talking to the tracking provider."""


class TrackingProviderClient:
    """Client for tracking provider API interactions."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = config.get_settings()
        self.base_url = (base_url or settings.tracking_provider_url).rstrip("/")
        self.timeout = timeout or settings.tracking_provider_timeout_seconds
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key if api_key is not None else settings.tracking_provider_api_key}",
            "Content-Type": "application/json",
        }

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def get_tracking_data(self, carrier: CarrierDescriptor, tracking_number: str) -> dict[str, Any]:
        """Fetch tracking data for one number."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/track",
                headers=self.headers,
                json={"carrier": carrier.code, "params": {"tracking_number": tracking_number}},
            )
            response.raise_for_status()
            payload = response.json()

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise TrackingProviderError(f"Tracking provider response has no data for {tracking_number}")
        return data
