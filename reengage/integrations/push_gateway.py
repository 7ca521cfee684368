"""
Push gateway transport - HTTP gateway that performs the web-push delivery.

Auth: Bearer token. One POST per subscription:
    {"subscription": {"endpoint", "keys"}, "payload": {...}}
The gateway answers with the push service's status code; 404/410 mean the
subscription is gone.
"""
import logging
from typing import Optional

import httpx

from reengage.integrations.push_base import (
    EndpointResult,
    PushDeliveryError,
    PushResult,
    PushTransport,
)

logger = logging.getLogger(__name__)

TIMEOUT = 10.0


def _is_transient(result: EndpointResult) -> bool:
    # No status = network error
    return result.status_code is None or result.status_code == 429 or result.status_code >= 500


class GatewayPushTransport(PushTransport):
    """Delivers through a configured HTTP push gateway."""

    def __init__(self, gateway_url: str, token: Optional[str] = None, timeout: float = TIMEOUT):
        self.gateway_url = gateway_url
        self.timeout = timeout
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    async def _send_one(self, client: httpx.AsyncClient, subscription: dict, payload: dict) -> EndpointResult:
        endpoint = subscription["endpoint"]
        try:
            response = await client.post(
                self.gateway_url,
                headers=self._headers,
                json={"subscription": subscription, "payload": payload},
            )
        except httpx.HTTPError as e:
            logger.warning("Push gateway request failed for %s: %s", endpoint[:40], str(e))
            return EndpointResult(endpoint=endpoint, success=False, error=str(e))

        if response.is_success:
            return EndpointResult(endpoint=endpoint, success=True, status_code=response.status_code)

        return EndpointResult(
            endpoint=endpoint,
            success=False,
            status_code=response.status_code,
            error=response.text[:200],
        )

    async def send_notifications(self, subscriptions: list[dict], payload: dict) -> PushResult:
        result = PushResult()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for subscription in subscriptions:
                result.add(await self._send_one(client, subscription, payload))

        if result.results and result.success_count == 0 and all(_is_transient(r) for r in result.results):
            raise PushDeliveryError(
                f"All {len(result.results)} push deliveries failed transiently", result,
            )

        return result


class LoggingPushTransport(PushTransport):
    """Used when no gateway is configured: logs and reports every device as failed."""

    async def send_notifications(self, subscriptions: list[dict], payload: dict) -> PushResult:
        logger.warning(
            "No push gateway configured, dropping notification %r for %d devices",
            payload.get("title"), len(subscriptions),
        )
        result = PushResult()
        for subscription in subscriptions:
            result.add(EndpointResult(
                endpoint=subscription["endpoint"],
                success=False,
                error="push gateway not configured",
            ))
        return result


def get_push_transport() -> PushTransport:
    from reengage.config import get_settings
    settings = get_settings()
    if settings.push_gateway_url:
        return GatewayPushTransport(
            settings.push_gateway_url,
            token=settings.push_gateway_token,
            timeout=settings.push_timeout_seconds,
        )
    return LoggingPushTransport()
