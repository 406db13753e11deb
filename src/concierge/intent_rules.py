"""자유 텍스트 의도 감지.

설정(concierge.yaml `intents`)의 키워드 규칙으로 의도를 추론합니다.
주문번호/이메일은 페이로드로 추출하고, 이전 턴이 상품 탐색이면
"cheaper", "in gold" 같은 후속 표현을 상품 탐색의 연장으로 해석합니다.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from src.config import ConciergeConfig

from .types import ConciergeIntent

logger = logging.getLogger(__name__)

# 설정이 비어 있을 때 쓰는 기본 규칙
DEFAULT_INTENT_RULES: Dict[str, Dict[str, Any]] = {
    "track_order": {"confidence": 0.9, "keywords": ["track", "where is my order", "order status", "shipped"]},
    "return_exchange": {"confidence": 0.85, "keywords": ["return", "exchange", "refund"]},
    "sizing_repairs": {"confidence": 0.85, "keywords": ["resize", "ring size", "repair"]},
    "care_warranty": {"confidence": 0.8, "keywords": ["clean", "care", "warranty"]},
    "financing": {"confidence": 0.8, "keywords": ["financing", "installments", "pay later"]},
    "stylist_contact": {"confidence": 0.9, "keywords": ["stylist", "human", "real person"]},
    "csat": {"confidence": 0.75, "keywords": ["feedback"]},
    "find_product": {
        "confidence": 0.8,
        "keywords": ["ring", "necklace", "earrings", "bracelet", "gift", "show me"],
        "refinements": ["cheaper", "under", "gold", "silver", "platinum", "similar"],
    },
}

METALS = ("gold", "silver", "platinum")
CATEGORY_WORDS = {
    "ring": "rings",
    "rings": "rings",
    "band": "rings",
    "necklace": "necklaces",
    "pendant": "necklaces",
    "chain": "necklaces",
    "earring": "earrings",
    "earrings": "earrings",
    "hoops": "earrings",
    "studs": "earrings",
    "bracelet": "bracelets",
    "cuff": "bracelets",
}

# 서로 다른 서비스 의도가 동시에 매칭되면 신뢰도를 낮춤
AMBIGUITY_PENALTY = 0.25
ORDER_NUMBER_CONFIDENCE = 0.95
REFINEMENT_CONFIDENCE = 0.75

_PRICE_RE = re.compile(r"under\s*\$?\s*(\d[\d,]*)", re.IGNORECASE)


@dataclass
class DetectedIntent:
    """의도 감지 결과."""

    intent: ConciergeIntent
    confidence: float
    payload: Dict[str, Any] = field(default_factory=dict)
    source: str = "inferred"
    reason: str = ""


def _contains(text: str, keyword: str) -> bool:
    """단어 경계 기준 키워드 포함 여부."""
    return re.search(rf"\b{re.escape(keyword.lower())}\b", text) is not None


def _matched_keywords(text: str, keywords: List[str]) -> List[str]:
    return [k for k in keywords if _contains(text, k)]


def extract_order_number(text: str, config: ConciergeConfig) -> Optional[str]:
    """텍스트에서 주문번호 추출."""
    match = re.search(config.order_number_pattern, text, re.IGNORECASE)
    return match.group(0).upper() if match else None


def extract_email(text: str, config: ConciergeConfig) -> Optional[str]:
    """텍스트에서 이메일 추출."""
    match = re.search(config.email_pattern, text)
    return match.group(0) if match else None


def extract_product_filters(text: str) -> Dict[str, Any]:
    """상품 필터 추출 (금속, 카테고리, 가격 상한)."""
    lowered = text.lower()
    filters: Dict[str, Any] = {}
    for metal in METALS:
        if _contains(lowered, metal):
            filters["metal"] = metal
            break
    for word, category in CATEGORY_WORDS.items():
        if _contains(lowered, word):
            filters["category"] = category
            break
    price = _PRICE_RE.search(lowered)
    if price:
        filters["priceMax"] = float(price.group(1).replace(",", ""))
    return filters


def _refine_product_search(
    text: str,
    refinements: List[str],
    last_filters: Optional[Mapping[str, Any]],
) -> Optional[DetectedIntent]:
    """이전 상품 탐색의 후속 표현 처리."""
    hits = _matched_keywords(text, refinements)
    if not hits:
        return None

    payload: Dict[str, Any] = {"filters": {**(last_filters or {}), **extract_product_filters(text)}}
    if _contains(text, "cheaper"):
        payload["sortBy"] = "price-asc"
    return DetectedIntent(
        intent=ConciergeIntent.FIND_PRODUCT,
        confidence=REFINEMENT_CONFIDENCE,
        payload=payload,
        reason=f"refinement: {', '.join(hits)}",
    )


def _score_rules(text: str, rules: Mapping[str, Mapping[str, Any]]) -> List[Tuple[float, int, ConciergeIntent, List[str]]]:
    """규칙별 매칭 점수 계산. (신뢰도, 매칭 수, 의도, 키워드) 목록."""
    scored = []
    for name, rule in rules.items():
        intent = ConciergeIntent.parse(name)
        if intent is None:
            logger.warning(f"알 수 없는 의도 규칙 무시: {name}")
            continue
        hits = _matched_keywords(text, list(rule.get("keywords", [])))
        if hits:
            scored.append((float(rule.get("confidence", 0.8)), len(hits), intent, hits))
    scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return scored


def detect_intent(
    text: str,
    context: Optional[Mapping[str, Any]],
    config: ConciergeConfig,
) -> Optional[DetectedIntent]:
    """자유 텍스트에서 의도 추론.

    Args:
        text: 게스트 입력
        context: 대화 컨텍스트 (lastIntent, lastFilters 사용)
        config: 컨시어지 설정

    Returns:
        감지 결과. 아무 규칙도 맞지 않으면 None.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return None

    lowered = trimmed.lower()
    context = context or {}
    rules = config.intent_rules or DEFAULT_INTENT_RULES

    order_number = extract_order_number(trimmed, config)
    email = extract_email(trimmed, config)

    # 주문번호가 보이면 주문 조회가 가장 강한 신호
    if order_number:
        scored = _score_rules(lowered, rules)
        if scored and scored[0][2] == ConciergeIntent.RETURN_EXCHANGE:
            return DetectedIntent(
                intent=ConciergeIntent.RETURN_EXCHANGE,
                confidence=ORDER_NUMBER_CONFIDENCE,
                payload={"orderNumber": order_number},
                reason="order number + return keywords",
            )
        payload = {"orderNumber": order_number}
        if email:
            payload["email"] = email
        return DetectedIntent(
            intent=ConciergeIntent.TRACK_ORDER,
            confidence=ORDER_NUMBER_CONFIDENCE,
            payload=payload,
            reason="order number detected",
        )

    if context.get("lastIntent") == ConciergeIntent.FIND_PRODUCT.value:
        product_rule = rules.get(ConciergeIntent.FIND_PRODUCT.value, {})
        refined = _refine_product_search(
            lowered,
            list(product_rule.get("refinements", [])),
            context.get("lastFilters"),
        )
        if refined:
            return refined

    scored = _score_rules(lowered, rules)
    if not scored:
        return None

    confidence, _, intent, hits = scored[0]
    reason = f"keywords: {', '.join(hits)}"
    # 상품 단어("ring" 등)는 서비스 문의에도 자주 섞이므로 경쟁 의도로 보지 않음
    competing = {item[2] for item in scored[1:]} - {intent, ConciergeIntent.FIND_PRODUCT}
    if competing:
        confidence = round(confidence - AMBIGUITY_PENALTY, 2)
        reason += f" (also matched {', '.join(sorted(i.value for i in competing))})"

    payload: Dict[str, Any] = {}
    if intent == ConciergeIntent.FIND_PRODUCT:
        filters = extract_product_filters(lowered)
        if filters:
            payload["filters"] = filters
    elif intent in (ConciergeIntent.TRACK_ORDER, ConciergeIntent.STYLIST_CONTACT) and email:
        payload["email"] = email

    return DetectedIntent(intent=intent, confidence=confidence, payload=payload, reason=reason)
