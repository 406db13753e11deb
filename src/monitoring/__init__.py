"""모니터링 모듈.

Prometheus 메트릭 및 HTTP 미들웨어를 제공합니다.
"""

from .metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION,
    RESOLUTIONS_TOTAL,
    RESOLVER_LATENCY,
    DISAMBIGUATIONS_TOTAL,
    ACTIONS_TOTAL,
    MODULES_RENDERED_TOTAL,
    set_app_info,
    track_request,
    track_resolution,
    track_disambiguation,
    track_action,
    track_render,
    timed_resolution,
)
from .middleware import PrometheusMiddleware

__all__ = [
    "HTTP_REQUESTS_TOTAL",
    "HTTP_REQUEST_DURATION",
    "RESOLUTIONS_TOTAL",
    "RESOLVER_LATENCY",
    "DISAMBIGUATIONS_TOTAL",
    "ACTIONS_TOTAL",
    "MODULES_RENDERED_TOTAL",
    "set_app_info",
    "track_request",
    "track_resolution",
    "track_disambiguation",
    "track_action",
    "track_render",
    "timed_resolution",
    "PrometheusMiddleware",
]
