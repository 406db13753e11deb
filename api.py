from __future__ import annotations
"""FastAPI 서버 (컨시어지 모듈 라우터).

구성
- 리졸버: 의도/액션/텍스트 → 다음 모듈 결정
- 지원: 숏리스트 저장, 주문 알림 구독
- 렌더: 모듈 페이로드 → HTML 조각
- 모니터링: 헬스체크, Prometheus 메트릭
"""

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette.responses import Response as StarletteResponse

from src.concierge.provider import StoreDataProvider, get_data_provider
from src.concierge.renderer import render_module
from src.concierge.resolver import IntentResolver, ResolveRequest, get_resolver
from src.concierge.types import MODULE_TYPES, ConciergeIntent, ProductSummary
from src.config import get_config
from src.core.exceptions import AppError, UnknownIntentError, ValidationError
from src.core.logging import get_request_id, set_request_id, set_session_id, setup_logging
from src.monitoring import PrometheusMiddleware
from src.monitoring.metrics import set_app_info

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(
        level=config.app.log_level,
        log_file=f"{config.paths.logs_dir}/concierge.log",
        json_format=config.app.json_logs,
    )
    # 앱 정보 설정
    set_app_info(config.app.name, config.app.version, config.app.environment)
    logger.info(f"컨시어지 API 시작 (env={config.app.environment})")

    yield


app = FastAPI(title="Concierge Module Router API", version="0.3.0", lifespan=lifespan)

# CORS 미들웨어
# 위젯이 스토어프론트 도메인에서 호출하므로 개발 중에는 전체 허용
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus 모니터링 미들웨어
app.add_middleware(PrometheusMiddleware)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """x-request-id를 로깅 컨텍스트에 연결."""
    request_id = set_request_id(request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


# -------- 전역 예외 핸들러 --------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """애플리케이션 예외 핸들러."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message} {exc.details}")
    else:
        logger.info(f"{exc.error_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_envelope(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """요청 본문 검증 실패 → 400 envelope."""
    error = ValidationError(details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]})
    return JSONResponse(status_code=error.status_code, content=error.to_envelope())


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """일반 예외 핸들러."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=AppError().to_envelope())


# -------- 요청 모델 --------


class WireRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ShortlistRequest(WireRequest):
    session_id: str
    items: List[ProductSummary] = Field(default_factory=list)


class OrderUpdatesRequest(WireRequest):
    session_id: str
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    origin_intent: Optional[str] = None


class RenderRequest(WireRequest):
    module: Dict[str, Any]
    is_processing: bool = False


def _ok(data: Any, **meta: Any) -> Dict[str, Any]:
    """성공 응답 봉투."""
    return {"success": True, "data": data, "meta": {"requestId": get_request_id(), **meta}}


# -------- Health / Monitoring --------


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> StarletteResponse:
    """Prometheus 메트릭 엔드포인트."""
    return StarletteResponse(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


@app.get("/", include_in_schema=False)
async def root() -> Dict[str, Any]:
    """루트 엔드포인트: 간단한 안내 정보 제공."""
    config = get_config()
    return {
        "name": config.app.name,
        "version": config.app.version,
        "links": {
            "docs": "/docs",
            "openapi": "/openapi.json",
            "healthz": "/healthz",
            "health": "/health",
            "metrics": "/metrics",
            "modules": "/concierge/modules",
        },
        "message": "Concierge API is running. See /docs for details.",
    }


@app.get("/health")
async def health_check(provider: StoreDataProvider = Depends(get_data_provider)) -> Dict[str, Any]:
    """상세 헬스체크."""
    health: Dict[str, Any] = {
        "status": "healthy",
        "components": {},
    }

    # DB 체크
    try:
        conn = sqlite3.connect(provider.support.db_path)
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
        health["components"]["database"] = {"status": "up"}
    except sqlite3.Error as e:
        health["components"]["database"] = {"status": "down", "reason": str(e)}
        health["status"] = "degraded"

    # 카탈로그 체크
    products = len(provider.catalog.products)
    health["components"]["catalog"] = {"status": "up" if products else "empty", "products": products}
    if not products:
        health["status"] = "degraded"

    return health


# -------- Concierge --------


@app.get("/concierge/modules")
async def list_modules() -> Dict[str, Any]:
    """닫힌 모듈 타입 집합."""
    return _ok({"types": sorted(MODULE_TYPES)})


@app.post("/concierge/resolve")
async def resolve(
    body: ResolveRequest,
    resolver: IntentResolver = Depends(get_resolver),
) -> Dict[str, Any]:
    """의도(명시 또는 추론) → 다음 모듈."""
    set_session_id(body.context.session_id)
    resolution = await resolver.resolve(body)
    return _ok(resolution.to_wire(), moduleType=resolution.module.type)


@app.post("/concierge/intents/{intent}")
async def resolve_intent(
    intent: str,
    body: Optional[ResolveRequest] = None,
    resolver: IntentResolver = Depends(get_resolver),
) -> Dict[str, Any]:
    """명시적 의도 실행."""
    if ConciergeIntent.parse(intent) is None:
        raise UnknownIntentError(f"Unknown intent: {intent}", details={"intent": intent})

    request = (body or ResolveRequest()).model_copy(update={"intent": intent})
    set_session_id(request.context.session_id)
    resolution = await resolver.resolve(request)
    return _ok(resolution.to_wire(), moduleType=resolution.module.type)


@app.post("/concierge/shortlist")
async def save_shortlist(
    body: ShortlistRequest,
    provider: StoreDataProvider = Depends(get_data_provider),
) -> Dict[str, Any]:
    """세션 숏리스트 저장."""
    set_session_id(body.session_id)
    count = await provider.save_shortlist(body.session_id, body.items)
    return _ok({"sessionId": body.session_id, "count": count})


@app.post("/concierge/order-updates")
async def subscribe_order_updates(
    body: OrderUpdatesRequest,
    provider: StoreDataProvider = Depends(get_data_provider),
) -> Dict[str, Any]:
    """주문 문자 알림 구독."""
    order_number = body.order_number or body.order_id
    if not order_number:
        raise ValidationError("An order number is required", details={"field": "orderNumber"})

    set_session_id(body.session_id)
    created = await provider.subscribe_order_updates(body.session_id, order_number)
    message = (
        "Perfect—I'll text studio milestones to you in real time."
        if created
        else "You're already subscribed to updates for this order."
    )
    return _ok({"subscribed": True, "orderNumber": order_number, "message": message})


@app.post("/concierge/render", response_class=HTMLResponse)
async def render(body: RenderRequest) -> HTMLResponse:
    """모듈 → HTML 조각. 알 수 없는 타입이면 빈 본문."""
    return HTMLResponse(content=render_module(body.module, is_processing=body.is_processing))
