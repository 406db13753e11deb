"""데이터 프로바이더 인터페이스.

상품 검색, 주문 조회, 숏리스트/티켓/CSAT 저장을 비동기 기능으로 노출합니다.
컨시어지 코어는 성공/실패만 신경 쓰며 내부 저장 형태에는 의존하지 않습니다.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from src.core.exceptions import ProviderError

from .types import ProductSummary

logger = logging.getLogger(__name__)


@dataclass
class OrderRecord:
    """주문 조회 결과."""

    order_id: str
    order_number: str
    email: str
    status: str  # placed, in_production, shipped, delivered
    placed_at: str = ""
    shipped_at: Optional[str] = None
    delivered_at: Optional[str] = None
    estimated_delivery: Optional[str] = None
    items: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class TicketRecord:
    """스타일리스트/반품 티켓."""

    ticket_id: str
    session_id: str
    kind: str  # stylist, return
    customer_email: str = ""
    customer_name: str = ""
    status: str = "open"
    priority: str = "normal"
    notes: str = ""
    order_number: Optional[str] = None
    shortlist: List[Dict[str, Any]] = field(default_factory=list)
    created_at: str = ""


@dataclass
class CsatRecord:
    """CSAT 응답."""

    id: str
    session_id: str
    rating: str
    score: int
    notes: str = ""
    intent: Optional[str] = None
    timestamp: str = ""


class DataProvider(Protocol):
    """컨시어지가 사용하는 데이터 기능 인터페이스."""

    async def search_products(
        self,
        query: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        limit: int = 8,
    ) -> List[ProductSummary]:
        ...

    async def lookup_order(
        self,
        order_number: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[OrderRecord]:
        ...

    async def save_shortlist(self, session_id: str, items: List[ProductSummary]) -> int:
        ...

    async def create_stylist_ticket(
        self,
        session_id: str,
        name: str,
        email: str,
        notes: str,
        shortlist: List[ProductSummary],
        priority: str = "normal",
    ) -> TicketRecord:
        ...

    async def create_return_request(
        self,
        session_id: str,
        order_number: str,
        option: str,
        notes: str = "",
    ) -> TicketRecord:
        ...

    async def record_csat(
        self,
        session_id: str,
        rating: str,
        score: int,
        notes: str = "",
        intent: Optional[str] = None,
    ) -> CsatRecord:
        ...

    async def subscribe_order_updates(self, session_id: str, order_number: str) -> bool:
        ...


class StoreDataProvider:
    """카탈로그(인메모리) + 지원 저장소(sqlite) 조합 프로바이더.

    카탈로그/저장소 예외는 모두 ProviderError로 감쌉니다.
    """

    def __init__(self, catalog, support):
        self.catalog = catalog
        self.support = support

    async def search_products(
        self,
        query: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        limit: int = 8,
    ) -> List[ProductSummary]:
        try:
            return self.catalog.search(query=query, filters=filters, sort_by=sort_by, limit=limit)
        except Exception as e:
            logger.error(f"상품 검색 실패 (filters={filters}): {e}")
            raise ProviderError(details={"operation": "search_products"}) from e

    async def lookup_order(
        self,
        order_number: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[OrderRecord]:
        try:
            return self.catalog.find_order(order_number=order_number, email=email)
        except Exception as e:
            logger.error(f"주문 조회 실패 (order={order_number}): {e}")
            raise ProviderError(details={"operation": "lookup_order"}) from e

    async def save_shortlist(self, session_id: str, items: List[ProductSummary]) -> int:
        try:
            return self.support.save_shortlist(session_id, [item.to_wire() for item in items])
        except Exception as e:
            logger.error(f"숏리스트 저장 실패 (session={session_id}): {e}")
            raise ProviderError(details={"operation": "save_shortlist"}) from e

    async def create_stylist_ticket(
        self,
        session_id: str,
        name: str,
        email: str,
        notes: str,
        shortlist: List[ProductSummary],
        priority: str = "normal",
    ) -> TicketRecord:
        try:
            return self.support.create_ticket(
                session_id=session_id,
                kind="stylist",
                customer_name=name,
                customer_email=email,
                notes=notes,
                priority=priority,
                shortlist=[item.to_wire() for item in shortlist],
            )
        except Exception as e:
            logger.error(f"스타일리스트 티켓 생성 실패 (session={session_id}): {e}")
            raise ProviderError(details={"operation": "create_stylist_ticket"}) from e

    async def create_return_request(
        self,
        session_id: str,
        order_number: str,
        option: str,
        notes: str = "",
    ) -> TicketRecord:
        try:
            return self.support.create_ticket(
                session_id=session_id,
                kind="return",
                notes=f"{option}: {notes}".strip(": "),
                order_number=order_number,
            )
        except Exception as e:
            logger.error(f"반품 요청 생성 실패 (order={order_number}): {e}")
            raise ProviderError(details={"operation": "create_return_request"}) from e

    async def record_csat(
        self,
        session_id: str,
        rating: str,
        score: int,
        notes: str = "",
        intent: Optional[str] = None,
    ) -> CsatRecord:
        try:
            return self.support.record_csat(
                session_id=session_id,
                rating=rating,
                score=score,
                notes=notes,
                intent=intent,
            )
        except Exception as e:
            logger.error(f"CSAT 저장 실패 (session={session_id}): {e}")
            raise ProviderError(details={"operation": "record_csat"}) from e

    async def subscribe_order_updates(self, session_id: str, order_number: str) -> bool:
        try:
            return self.support.subscribe_order_updates(session_id, order_number)
        except Exception as e:
            logger.error(f"주문 알림 구독 실패 (order={order_number}): {e}")
            raise ProviderError(details={"operation": "subscribe_order_updates"}) from e


_provider: Optional[StoreDataProvider] = None


def get_data_provider() -> StoreDataProvider:
    """전역 프로바이더 인스턴스 반환."""
    global _provider
    if _provider is None:
        from src.config import get_config

        from .catalog import InMemoryCatalog
        from .repository import SupportRepository

        paths = get_config().paths
        _provider = StoreDataProvider(
            catalog=InMemoryCatalog.from_seed(paths.seed_path),
            support=SupportRepository(),
        )
    return _provider


def reset_data_provider() -> None:
    """프로바이더 리셋 (테스트용)."""
    global _provider
    _provider = None
