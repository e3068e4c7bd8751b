"""Rate-limit policy: fixed request budget per endpoint over a rolling window.

Exceeding the budget fails the call with RateLimitError; waiting and retrying
is left to the caller.
"""
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import RateLimitError


@dataclass
class RateLimitQuota:
    """Per-endpoint rate-limit quota."""
    requests_per_window: int  # max requests allowed in the window
    window_seconds: float = 1.0


@dataclass
class RateLimitState:
    """Track request history for a single endpoint."""
    quota: RateLimitQuota
    request_times: List[float] = field(default_factory=list)

    def is_allowed(self) -> bool:
        """Check if a new request is allowed under the quota."""
        now = time.time()
        # Remove requests outside the current window
        cutoff = now - self.quota.window_seconds
        self.request_times = [t for t in self.request_times if t > cutoff]

        return len(self.request_times) < self.quota.requests_per_window

    def record_request(self) -> None:
        self.request_times.append(time.time())

    def time_until_allowed(self) -> float:
        """Return seconds until next request is allowed. 0 if allowed now."""
        if self.is_allowed():
            return 0.0
        oldest = min(self.request_times)
        return max(0.0, oldest + self.quota.window_seconds - time.time())


class RateLimitManager:
    """Enforce rate-limit quotas per endpoint.

    Order placement endpoints share the "orders" quota; every other endpoint
    falls back to "default".
    """

    ORDER_ENDPOINTS = (
        "/api/v2/mix/order/place-order",
        "/api/v2/mix/order/place-tpsl-order",
        "/api/v2/spot/trade/place-order",
        "/api/v2/margin/crossed/place-order",
        "/api/v2/margin/isolated/place-order",
    )

    def __init__(self, quotas: Optional[Dict[str, RateLimitQuota]] = None):
        self.quotas = {**self.default_quotas(), **(quotas or {})}
        self.states: Dict[str, RateLimitState] = {}

    @classmethod
    def default_quotas(cls, requests_per_second: int = 10, orders_per_second: int = 10) -> Dict[str, RateLimitQuota]:
        return {
            "orders": RateLimitQuota(requests_per_window=orders_per_second),
            "default": RateLimitQuota(requests_per_window=requests_per_second),
        }

    def _bucket(self, endpoint: str) -> str:
        if endpoint in self.quotas:
            return endpoint
        if endpoint in self.ORDER_ENDPOINTS and "orders" in self.quotas:
            return "orders"
        return "default"

    def _get_state(self, endpoint: str) -> RateLimitState:
        """Get or create rate-limit state for endpoint's bucket."""
        bucket = self._bucket(endpoint)
        if bucket not in self.states:
            self.states[bucket] = RateLimitState(quota=self.quotas[bucket])
        return self.states[bucket]

    def is_allowed(self, endpoint: str) -> bool:
        return self._get_state(endpoint).is_allowed()

    def record_request(self, endpoint: str) -> None:
        self._get_state(endpoint).record_request()

    def time_until_allowed(self, endpoint: str) -> float:
        return self._get_state(endpoint).time_until_allowed()

    def acquire(self, endpoint: str) -> None:
        """Consume one request from the endpoint's budget.

        Raises:
            RateLimitError: If the budget for the current window is exhausted
        """
        state = self._get_state(endpoint)
        if not state.is_allowed():
            wait = state.time_until_allowed()
            raise RateLimitError(
                f"Rate limit exceeded: {state.quota.requests_per_window} requests per "
                f"{state.quota.window_seconds:g}s (retry in {wait:.2f}s)",
                endpoint=endpoint,
            )
        state.record_request()
