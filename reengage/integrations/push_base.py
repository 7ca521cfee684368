"""
Abstract push transport - every delivery backend implements this.
A user may have several registered devices; results are per endpoint.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

# Endpoint is gone for good: the subscription should be deleted
GONE_STATUS_CODES = (404, 410)


@dataclass
class EndpointResult:
    endpoint: str
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass
class PushResult:
    success_count: int = 0
    failure_count: int = 0
    results: list[EndpointResult] = field(default_factory=list)

    def add(self, result: EndpointResult) -> None:
        self.results.append(result)
        if result.success:
            self.success_count += 1
        else:
            self.failure_count += 1

    @property
    def gone_endpoints(self) -> list[str]:
        return [r.endpoint for r in self.results if should_delete_subscription(r)]


class PushDeliveryError(Exception):
    """Transient delivery failure: no device could be reached, worth retrying."""

    def __init__(self, message: str, result: Optional[PushResult] = None):
        super().__init__(message)
        self.result = result


def should_delete_subscription(result: EndpointResult) -> bool:
    return not result.success and result.status_code in GONE_STATUS_CODES


class PushTransport(ABC):
    """Abstract base class for push delivery backends."""

    @abstractmethod
    async def send_notifications(self, subscriptions: list[dict], payload: dict) -> PushResult:
        """
        Deliver one payload to every subscription.

        subscriptions: [{"endpoint": str, "keys": {"p256dh": str, "auth": str}}]
        payload: {"title", "body", "icon", "badge", "data"}
        Raises PushDeliveryError when the failure is transient.
        """
        ...
