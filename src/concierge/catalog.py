"""인메모리 카탈로그 백엔드.

시드 JSON(상품/주문)을 메모리에 올려 상품 검색과 주문 조회를 제공합니다.
외부 커머스 백엔드 없이도 컨시어지 흐름을 끝까지 실행할 수 있습니다.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .provider import OrderRecord
from .types import ProductSummary

logger = logging.getLogger(__name__)

SORT_KEYS = ("featured", "price-asc", "price-desc", "newest")


@dataclass
class ProductData:
    """카탈로그 상품."""

    id: str
    title: str
    price: float = 0.0
    slug: str = ""
    image: str = ""
    metal: str = ""
    category: str = ""
    ready_to_ship: bool = False
    tags: List[str] = field(default_factory=list)
    featured_rank: int = 999
    created_at: str = ""

    def to_summary(self) -> ProductSummary:
        return ProductSummary(
            id=self.id,
            title=self.title,
            price=self.price,
            slug=self.slug or None,
            image=self.image or None,
            metal=self.metal or None,
            category=self.category or None,
            ready_to_ship=self.ready_to_ship,
        )

    def matches_query(self, query: str) -> bool:
        haystack = " ".join([self.title, self.metal, self.category, *self.tags]).lower()
        return all(term in haystack for term in query.lower().split())


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class InMemoryCatalog:
    """상품/주문 인메모리 저장소."""

    def __init__(
        self,
        products: Optional[List[ProductData]] = None,
        orders: Optional[List[OrderRecord]] = None,
    ):
        self.products: List[ProductData] = list(products or [])
        self.orders: List[OrderRecord] = list(orders or [])

    @classmethod
    def from_seed(cls, path: Path | str) -> "InMemoryCatalog":
        """시드 JSON 파일에서 로드. 파일이 없으면 빈 카탈로그."""
        path = Path(path)
        if not path.exists():
            logger.warning(f"카탈로그 시드 파일 없음: {path}")
            return cls()

        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        products = [ProductData(**p) for p in raw.get("products", [])]
        orders = [OrderRecord(**o) for o in raw.get("orders", [])]
        logger.info(f"카탈로그 로드: 상품 {len(products)}개, 주문 {len(orders)}개")
        return cls(products=products, orders=orders)

    def search(
        self,
        query: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
        sort_by: Optional[str] = None,
        limit: int = 8,
    ) -> List[ProductSummary]:
        """필터/정렬 적용 상품 검색.

        지원 필터: category, metal, readyToShip, priceMin, priceMax
        """
        filters = filters or {}
        rows = self.products

        if query:
            rows = [p for p in rows if p.matches_query(query)]

        category = filters.get("category")
        if category:
            rows = [p for p in rows if p.category == category]

        metal = filters.get("metal")
        if metal:
            rows = [p for p in rows if p.metal == metal]

        if filters.get("readyToShip"):
            rows = [p for p in rows if p.ready_to_ship]

        price_min = _as_float(filters.get("priceMin"))
        if price_min is not None:
            rows = [p for p in rows if p.price >= price_min]

        price_max = _as_float(filters.get("priceMax"))
        if price_max is not None:
            rows = [p for p in rows if p.price <= price_max]

        if sort_by == "price-asc":
            rows = sorted(rows, key=lambda p: (p.price, p.id))
        elif sort_by == "price-desc":
            rows = sorted(rows, key=lambda p: (-p.price, p.id))
        elif sort_by == "newest":
            rows = sorted(rows, key=lambda p: (p.created_at, p.id), reverse=True)
        else:
            rows = sorted(rows, key=lambda p: (p.featured_rank, p.id))

        return [p.to_summary() for p in rows[: max(0, limit)]]

    def facet_values(self, key: str) -> List[str]:
        """필터 옵션용 고유값 목록."""
        values = {getattr(p, key) for p in self.products if getattr(p, key, "")}
        return sorted(values)

    def find_order(
        self,
        order_number: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[OrderRecord]:
        """주문번호/이메일로 주문 조회.

        둘 다 주어지면 모두 일치해야 합니다. 이메일만 있으면 가장 최근 주문.
        """
        if not order_number and not email:
            return None

        candidates = self.orders
        if order_number:
            normalized = order_number.strip().upper()
            candidates = [o for o in candidates if o.order_number.upper() == normalized]
        if email:
            normalized_email = email.strip().lower()
            candidates = [o for o in candidates if o.email.lower() == normalized_email]

        if not candidates:
            return None
        return max(candidates, key=lambda o: o.placed_at)
