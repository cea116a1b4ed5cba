"""Convenience decorator for feature usage tracking.

    telemetry = TelemetryClient(...)

    @track_feature(telemetry, "data_export")
    def export_data(export_type):
        ...
"""

from __future__ import annotations

import functools
from typing import Any, Callable, Dict, Optional, TypeVar

from .client import TelemetryClient

F = TypeVar("F", bound=Callable[..., Any])

FEATURE_USED = "feature_used"


def track_feature(
    client: TelemetryClient,
    feature_name: str,
    properties: Optional[Dict[str, Any]] = None,
    include_result: bool = False,
) -> Callable[[F], F]:
    """Decorator to queue a ``feature_used`` event on every call.

    The event is queued before the function runs, so it is recorded even if
    the function raises. Consent is checked by the client as usual.

    Args:
        client: The plugin's telemetry client.
        feature_name: Name of the feature being tracked.
        properties: Extra properties for every event.
        include_result: Whether to queue a ``feature_completed`` event with
            the result type and length after a successful call.

    Returns:
        Decorated function.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            client.track(
                FEATURE_USED,
                {
                    "feature": feature_name,
                    "function": func.__name__,
                    **(properties or {}),
                },
            )

            result = func(*args, **kwargs)

            if include_result:
                result_info: Dict[str, Any] = {"feature": feature_name}
                if result is not None:
                    result_info["result_type"] = type(result).__name__
                    if hasattr(result, "__len__"):
                        result_info["result_length"] = len(result)
                client.track("feature_completed", result_info)

            return result

        return wrapper  # type: ignore

    return decorator
