"""Prometheus instrumentation for the authentication flows."""

from __future__ import annotations

import functools
from typing import Callable, TypeVar

from prometheus_client import Counter

from .domain.errors import AuthError

F = TypeVar("F", bound=Callable)

AUTH_FLOW_TOTAL = Counter(
    "auth_flow_total",
    "Authentication flow invocations partitioned by outcome.",
    ["flow", "outcome"],
)


def instrumented(flow: str) -> Callable[[F], F]:
    """Count each call of the wrapped flow as ``ok`` or by its :class:`ErrorKind`."""

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                result = func(*args, **kwargs)
            except AuthError as exc:
                AUTH_FLOW_TOTAL.labels(flow=flow, outcome=exc.kind.value).inc()
                raise
            AUTH_FLOW_TOTAL.labels(flow=flow, outcome="ok").inc()
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
