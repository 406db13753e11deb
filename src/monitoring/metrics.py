"""Prometheus 메트릭 정의.

컨시어지 라우터의 주요 메트릭을 정의합니다.
"""

from __future__ import annotations

import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Info

# ============================================
# HTTP 메트릭
# ============================================

HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ============================================
# 컨시어지 메트릭
# ============================================

RESOLUTIONS_TOTAL = Counter(
    "concierge_resolutions_total",
    "Total resolver decisions",
    ["intent", "module"],
)

RESOLVER_LATENCY = Histogram(
    "concierge_resolver_latency_seconds",
    "Resolver latency in seconds",
    ["intent"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

DISAMBIGUATIONS_TOTAL = Counter(
    "concierge_disambiguations_total",
    "Total intent-chooser fallbacks",
    ["reason"],  # no_match, low_confidence, ambiguous_order
)

ACTIONS_TOTAL = Counter(
    "concierge_actions_total",
    "Total dispatched widget actions",
    ["action_type", "status"],  # status: success, error, invalid, unknown, skipped
)

MODULES_RENDERED_TOTAL = Counter(
    "concierge_modules_rendered_total",
    "Total rendered modules",
    ["module"],
)

# 앱 정보
APP_INFO = Info(
    "app",
    "Application information",
)


def set_app_info(name: str, version: str, environment: str) -> None:
    """앱 정보 설정."""
    APP_INFO.info({
        "name": name,
        "version": version,
        "environment": environment,
    })


# ============================================
# 편의 함수
# ============================================


def track_request(method: str, endpoint: str, status: int, duration: float) -> None:
    """HTTP 요청 메트릭 기록.

    Args:
        method: HTTP 메서드
        endpoint: 엔드포인트 경로
        status: HTTP 상태 코드
        duration: 요청 소요 시간 (초)
    """
    HTTP_REQUESTS_TOTAL.labels(method=method, endpoint=endpoint, status=status).inc()
    HTTP_REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)


def track_resolution(intent: str, module: str, duration: float) -> None:
    """리졸버 결정 메트릭 기록.

    Args:
        intent: 결정된 의도 (없으면 "none")
        module: 반환된 모듈 타입
        duration: 처리 시간 (초)
    """
    RESOLUTIONS_TOTAL.labels(intent=intent, module=module).inc()
    RESOLVER_LATENCY.labels(intent=intent).observe(duration)


def track_disambiguation(reason: str) -> None:
    """intent-chooser 폴백 기록."""
    DISAMBIGUATIONS_TOTAL.labels(reason=reason).inc()


def track_action(action_type: str, status: str) -> None:
    """디스패처 액션 결과 기록."""
    ACTIONS_TOTAL.labels(action_type=action_type, status=status).inc()


def track_render(module: str) -> None:
    """모듈 렌더링 기록."""
    MODULES_RENDERED_TOTAL.labels(module=module).inc()


@contextmanager
def timed_resolution():
    """리졸버 처리 시간 측정 컨텍스트 매니저.

    yield된 딕셔너리에 intent/module을 채우면 종료 시 기록합니다.
    """
    start_time = time.time()
    outcome = {"intent": "none", "module": "none"}
    try:
        yield outcome
    finally:
        duration = time.time() - start_time
        track_resolution(outcome["intent"], outcome["module"], duration)
