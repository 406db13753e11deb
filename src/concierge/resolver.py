"""서버 의도 리졸버.

명시적 의도(또는 액션이 암시하는 의도)와 자유 텍스트, 대화 컨텍스트를 받아
다음에 보여줄 모듈 하나와 메시지, 세션 패치를 결정합니다.

리졸버는 상태가 없고 멱등적입니다. 같은 입력(같은 프로바이더 응답)이면
같은 출력을 내며, 모듈 ID도 내용에서 결정적으로 파생됩니다.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.config import ConciergeConfig, FeatureFlags
from src.core.exceptions import ProviderError, UnknownIntentError, ValidationError
from src.core.logging import log_event
from src.monitoring.metrics import timed_resolution, track_disambiguation

from .intent_rules import DetectedIntent, detect_intent
from .provider import DataProvider, OrderRecord
from .types import (
    ACTION_INTENTS,
    CardLink,
    ChoiceOption,
    ConciergeIntent,
    ConversationAction,
    CsatModule,
    EscalationFormModule,
    EscalationPrefill,
    ErrorNoticeModule,
    FilterGroup,
    FilterOption,
    InfoCardModule,
    IntentChooserModule,
    IntentOption,
    KnownOrderFields,
    ModulePayload,
    OrderLookupModule,
    OrderTimelineModule,
    ProductCarouselModule,
    ProductFilterModule,
    ProductSummary,
    ReturnOption,
    ReturnOptionsModule,
    TimelineStep,
)

logger = logging.getLogger(__name__)

SNAG_MESSAGE = "I ran into a snag—mind trying that again?"

PRODUCT_FILTER_GROUPS = [
    FilterGroup(
        key="category",
        label="Category",
        options=[
            FilterOption(value="rings", label="Rings"),
            FilterOption(value="necklaces", label="Necklaces"),
            FilterOption(value="earrings", label="Earrings"),
            FilterOption(value="bracelets", label="Bracelets"),
        ],
    ),
    FilterGroup(
        key="metal",
        label="Metal",
        options=[
            FilterOption(value="gold", label="Gold"),
            FilterOption(value="silver", label="Silver"),
            FilterOption(value="platinum", label="Platinum"),
        ],
    ),
    FilterGroup(
        key="readyToShip",
        label="Availability",
        options=[FilterOption(value="true", label="Ready to ship")],
    ),
]

FILTER_KEYS = ("category", "metal", "readyToShip", "priceMin", "priceMax")

SORT_OPTIONS = [
    ChoiceOption(value="featured", label="Featured"),
    ChoiceOption(value="price-asc", label="Price: low to high"),
    ChoiceOption(value="price-desc", label="Price: high to low"),
    ChoiceOption(value="newest", label="Newest"),
]

RETURN_OPTIONS = [
    ReturnOption(value="resize", label="Resize", description="Complimentary within 60 days."),
    ReturnOption(value="exchange", label="Exchange", description="Swap for another piece of equal value."),
    ReturnOption(value="refund", label="Refund", description="Back to your original payment method."),
]

# (상태, 라벨, 날짜 필드)
ORDER_STAGES = [
    ("placed", "Order placed", "placed_at"),
    ("in_production", "In production", None),
    ("shipped", "Shipped", "shipped_at"),
    ("delivered", "Delivered", "delivered_at"),
]

ORDER_STATUS_LABELS = {
    "placed": "Order placed",
    "in_production": "In the studio",
    "shipped": "On its way",
    "delivered": "Delivered",
}


def module_id(module_type: str, *parts: Any) -> str:
    """내용 기반 결정적 모듈 ID."""
    raw = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    digest = hashlib.sha1(raw.encode("utf-8")).hexdigest()[:10]
    return f"{module_type}-{digest}"


class _ContextModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class OrderRef(_ContextModel):
    """컨텍스트의 마지막 조회 주문."""

    order_id: Optional[str] = None
    order_number: Optional[str] = None
    email: Optional[str] = None


class EscalationContext(_ContextModel):
    """컨텍스트의 스타일리스트 요청 초안."""

    name: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None


class ResolverContext(_ContextModel):
    """대화 상태의 읽기 전용 뷰.

    형식이 잘못된 값은 요청 검증 단계에서 거부됩니다 (API에서는 400).
    알 수 없는 키는 무시합니다.
    """

    session_id: Optional[str] = None
    last_intent: Optional[str] = None
    last_filters: Optional[Dict[str, Any]] = None
    shortlist: List[ProductSummary] = Field(default_factory=list)
    last_order: Optional[OrderRef] = None
    escalation: Optional[EscalationContext] = None
    miss_count: int = Field(default=0, ge=0)

    @field_validator("shortlist", mode="before")
    @classmethod
    def _null_shortlist(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("miss_count", mode="before")
    @classmethod
    def _null_miss_count(cls, value: Any) -> Any:
        return 0 if value is None else value

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ResolveRequest(BaseModel):
    """리졸버 입력.

    Attributes:
        intent: 명시적 의도 (없으면 텍스트에서 추론)
        action: 직전 모듈 액션 (`{type, data}`)
        text: 게스트 자유 텍스트
        payload: 의도 실행 인자 (필터, 출처 등)
        context: 대화 상태의 읽기 전용 뷰 (camelCase)
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    intent: Optional[str] = None
    action: Optional[Dict[str, Any]] = None
    text: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    context: ResolverContext = Field(default_factory=ResolverContext)


@dataclass
class Resolution:
    """리졸버 출력."""

    module: ModulePayload
    messages: List[str] = field(default_factory=list)
    session_patch: Dict[str, Any] = field(default_factory=dict)
    intent: Optional[ConciergeIntent] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "module": self.module.to_wire(),
            "messages": list(self.messages),
            "sessionPatch": self.session_patch,
            "intent": self.intent.value if self.intent else None,
        }


Handler = Callable[[Dict[str, Any], Optional[ConversationAction], ResolverContext], Awaitable[Resolution]]


class IntentResolver:
    """의도 → 모듈 결정 테이블."""

    def __init__(
        self,
        config: ConciergeConfig,
        flags: FeatureFlags,
        provider: DataProvider,
    ):
        """초기화.

        Args:
            config: 컨시어지 설정 (임계값, 문구)
            flags: 기능 플래그 (전역 상태 대신 명시적으로 전달)
            provider: 데이터 프로바이더
        """
        self.config = config
        self.flags = flags
        self.provider = provider
        self._handlers: Dict[ConciergeIntent, Handler] = {
            ConciergeIntent.FIND_PRODUCT: self._find_product,
            ConciergeIntent.TRACK_ORDER: self._track_order,
            ConciergeIntent.RETURN_EXCHANGE: self._return_exchange,
            ConciergeIntent.SIZING_REPAIRS: partial(self._info_card, ConciergeIntent.SIZING_REPAIRS),
            ConciergeIntent.CARE_WARRANTY: partial(self._info_card, ConciergeIntent.CARE_WARRANTY),
            ConciergeIntent.FINANCING: partial(self._info_card, ConciergeIntent.FINANCING),
            ConciergeIntent.STYLIST_CONTACT: self._stylist_contact,
            ConciergeIntent.CSAT: self._csat,
        }

    async def resolve(self, request: ResolveRequest) -> Resolution:
        """다음 모듈 결정.

        Raises:
            UnknownIntentError: 명시적 의도가 알 수 없는 값인 경우
            ValidationError: 액션/제출 값이 잘못된 경우
        """
        with timed_resolution() as outcome:
            resolution = await self._resolve(request)
            outcome["intent"] = resolution.intent.value if resolution.intent else "none"
            outcome["module"] = resolution.module.type

        log_event(
            "concierge.resolved",
            intent=outcome["intent"],
            module=resolution.module.type,
            module_id=resolution.module.id,
            action=(request.action or {}).get("type"),
        )
        return resolution

    async def _resolve(self, request: ResolveRequest) -> Resolution:
        action = ConversationAction.from_wire(request.action) if request.action is not None else None
        context = request.context

        intent = self._explicit_intent(request, action)
        payload: Dict[str, Any] = dict(request.payload)

        if intent is None:
            detected = detect_intent(request.text or "", context.to_wire(), self.config)
            if detected is None:
                return self._chooser("no_match", None, context)
            if detected.confidence < self.config.confidence_threshold:
                return self._chooser("low_confidence", detected, context)
            intent = detected.intent
            payload = {**detected.payload, **payload, "source": "inferred", "reason": detected.reason}

        if action is not None and action.data:
            payload.update(action.data)

        handler = self._handlers[intent]
        try:
            resolution = await handler(payload, action, context)
        except ProviderError as e:
            logger.error(f"프로바이더 실패 (intent={intent.value}): {e.message} {e.details}")
            return self._error_notice(intent, action)

        if payload.get("source") == "intent-chooser":
            key = intent.value
            if intent == ConciergeIntent.FIND_PRODUCT and payload.get("slug") == "ready-to-ship":
                key = "find_product_ready_to_ship"
            confirmation = self.config.confirmations.get(key)
            if confirmation:
                resolution.messages.insert(0, confirmation)
        return resolution

    def _explicit_intent(
        self,
        request: ResolveRequest,
        action: Optional[ConversationAction],
    ) -> Optional[ConciergeIntent]:
        """요청 또는 액션이 명시하는 의도."""
        if request.intent:
            intent = ConciergeIntent.parse(request.intent)
            if intent is None:
                raise UnknownIntentError(f"Unknown intent: {request.intent}", details={"intent": request.intent})
            return intent
        if action is None:
            return None
        if action.type == "intent-chooser-select":
            return ConciergeIntent.parse(action.field("intent"))
        return ACTION_INTENTS.get(action.type)

    # ============================================
    # 폴백
    # ============================================

    def _chooser(
        self,
        reason: str,
        detected: Optional[DetectedIntent],
        context: ResolverContext,
    ) -> Resolution:
        """의도 선택 모듈 (확신이 없을 때)."""
        miss_count = context.miss_count + 1
        low_confidence = detected is not None and detected.confidence < self.config.human_threshold
        emphasize_human = low_confidence or miss_count >= self.flags.emphasize_human_after_misses

        options = []
        for option in self.config.chooser_options:
            intent = ConciergeIntent.parse(option.get("intent"))
            if intent is not None:
                options.append(IntentOption(intent=intent, label=option.get("label") or intent.value))

        track_disambiguation(reason)
        log_event(
            "concierge.disambiguation",
            level=logging.WARNING if miss_count >= 2 else logging.INFO,
            reason=reason,
            detected_intent=detected.intent.value if detected else None,
            confidence=detected.confidence if detected else None,
            miss_count=miss_count,
        )

        if miss_count >= 2:
            message = "I want to be sure I'm helping with the right thing. Choose one below—or I can bring in a stylist."
        else:
            message = "Got it. Pick what you need and I'll route you quickly."

        module = IntentChooserModule(
            id=module_id("intent-chooser", reason, miss_count, emphasize_human),
            options=options,
            emphasize_human=emphasize_human,
        )
        return Resolution(module=module, messages=[message], session_patch={"missCount": miss_count})

    def _error_notice(self, intent: ConciergeIntent, action: Optional[ConversationAction]) -> Resolution:
        """프로바이더 실패 시 재시도 가능한 에러 모듈."""
        retry = action.to_wire() if action else {"type": "intent-chooser-select", "data": {"intent": intent.value}}
        module = ErrorNoticeModule(
            id=module_id("error-notice", intent.value, retry),
            message=SNAG_MESSAGE,
            retryable=True,
            retry_action=retry,
        )
        return Resolution(module=module, messages=[], intent=intent)

    # ============================================
    # 의도별 핸들러
    # ============================================

    async def _find_product(
        self,
        payload: Dict[str, Any],
        action: Optional[ConversationAction],
        context: ResolverContext,
    ) -> Resolution:
        intent = ConciergeIntent.FIND_PRODUCT
        filters = payload.get("filters") if isinstance(payload.get("filters"), dict) else None
        if filters is None and isinstance(payload.get("selected"), dict):
            filters = payload["selected"]
        if filters is None:
            # 필터 폼 필드가 data 최상위로 올 때
            filters = {key: payload[key] for key in FILTER_KEYS if key in payload}
        filters = {k: v for k, v in filters.items() if v not in (None, "", [])}
        if isinstance(filters.get("readyToShip"), str):
            filters["readyToShip"] = filters["readyToShip"].lower() in ("true", "1", "yes", "on")
        sort_by = payload.get("sortBy") if isinstance(payload.get("sortBy"), str) else None
        query = payload.get("query") if isinstance(payload.get("query"), str) else None

        first_turn = action is None and context.last_intent != intent.value
        if first_turn and not filters and not query and not sort_by:
            module = ProductFilterModule(
                id=module_id("product-filter", intent.value),
                filters=PRODUCT_FILTER_GROUPS,
                sort_options=SORT_OPTIONS,
                sort_by="featured",
            )
            return Resolution(
                module=module,
                messages=["Tell me a little about what you're after."],
                session_patch={"lastIntent": intent.value, "missCount": 0},
                intent=intent,
            )

        products = await self.provider.search_products(
            query=query,
            filters=filters,
            sort_by=sort_by,
            limit=self.config.product_page_size,
        )

        session_patch = {"lastIntent": intent.value, "lastFilters": filters, "missCount": 0}
        if not products:
            module = ProductCarouselModule(
                id=module_id("product-carousel", filters, sort_by, query, []),
                products=[],
                empty_message="Nothing matched those filters yet. Try widening the price range or switching metals.",
            )
            return Resolution(
                module=module,
                messages=["I couldn't find a match—adjust the filters and I'll look again."],
                session_patch=session_patch,
                intent=intent,
            )

        module = ProductCarouselModule(
            id=module_id("product-carousel", filters, sort_by, query, [p.id for p in products]),
            products=products,
        )
        count = len(products)
        return Resolution(
            module=module,
            messages=[f"Here {'is' if count == 1 else 'are'} {count} piece{'' if count == 1 else 's'} you might love."],
            session_patch=session_patch,
            intent=intent,
        )

    async def _track_order(
        self,
        payload: Dict[str, Any],
        action: Optional[ConversationAction],
        context: ResolverContext,
    ) -> Resolution:
        intent = ConciergeIntent.TRACK_ORDER
        last_order = context.last_order or OrderRef()
        order_number = _clean(payload.get("orderNumber") or payload.get("orderId"))
        email = _clean(payload.get("email"))
        submitted = action is not None and action.type == "submit-order-lookup"

        if submitted and not order_number and not email:
            return self._chooser("ambiguous_order", None, context)

        if not submitted and not order_number:
            known = KnownOrderFields(
                order_number=last_order.order_number,
                email=email or last_order.email,
            )
            module = OrderLookupModule(id=module_id("order-lookup", known.to_wire()), known_fields=known)
            return Resolution(
                module=module,
                messages=["Share your order number or the email you used at checkout."],
                session_patch={"lastIntent": intent.value, "missCount": 0},
                intent=intent,
            )

        order = await self.provider.lookup_order(order_number=order_number, email=email)
        if order is None:
            known = KnownOrderFields(order_number=order_number, email=email)
            module = OrderLookupModule(
                id=module_id("order-lookup", known.to_wire(), "miss"),
                known_fields=known,
                error="I couldn't find an order with those details. Double-check the number or try your checkout email.",
            )
            return Resolution(
                module=module,
                messages=[],
                session_patch={"lastIntent": intent.value},
                intent=intent,
            )

        module = self._timeline(order)
        return Resolution(
            module=module,
            messages=[f"Found order {order.order_number}: {ORDER_STATUS_LABELS.get(order.status, order.status)}."],
            session_patch={
                "lastIntent": intent.value,
                "lastOrder": {"orderId": order.order_id, "orderNumber": order.order_number, "email": order.email},
                "missCount": 0,
            },
            intent=intent,
        )

    def _timeline(self, order: OrderRecord) -> OrderTimelineModule:
        """주문 상태를 타임라인 단계로 변환."""
        statuses = [stage[0] for stage in ORDER_STAGES]
        current = statuses.index(order.status) if order.status in statuses else 0
        delivered = order.status == "delivered"

        steps = []
        for i, (_, label, date_field) in enumerate(ORDER_STAGES):
            if i < current or delivered:
                state = "done"
            elif i == current:
                state = "current"
            else:
                state = "upcoming"
            date = getattr(order, date_field) if date_field else None
            if label == "Delivered" and not date:
                date = order.estimated_delivery
            steps.append(TimelineStep(label=label, state=state, date=date or None))

        return OrderTimelineModule(
            id=module_id("order-timeline", order.order_number, order.status),
            order_number=order.order_number,
            status=ORDER_STATUS_LABELS.get(order.status, order.status),
            steps=steps,
            offer_text_updates=self.flags.offer_text_updates and not delivered,
        )

    async def _return_exchange(
        self,
        payload: Dict[str, Any],
        action: Optional[ConversationAction],
        context: ResolverContext,
    ) -> Resolution:
        intent = ConciergeIntent.RETURN_EXCHANGE
        last_order = context.last_order or OrderRef()
        order_number = _clean(
            payload.get("orderNumber")
            or payload.get("orderId")
            or last_order.order_number
            or last_order.order_id
        )

        if not order_number:
            module = OrderLookupModule(
                id=module_id("order-lookup", intent.value),
                heading="Which order is this for?",
            )
            return Resolution(
                module=module,
                messages=["I need an order number first so I can file the return with the studio."],
                session_patch={"lastIntent": intent.value, "missCount": 0},
                intent=intent,
            )

        if action is not None and action.type == "submit-return-option":
            option = _clean(payload.get("option") or payload.get("value"))
            valid = {o.value for o in RETURN_OPTIONS}
            if option not in valid:
                raise ValidationError("Pick a return option first", details={"allowed": sorted(valid)})

            ticket = await self.provider.create_return_request(
                session_id=_session_id(context),
                order_number=order_number,
                option=option,
                notes=str(payload.get("notes") or ""),
            )
            module = InfoCardModule(
                id=module_id("info-card", intent.value, ticket.ticket_id),
                title="Return started",
                body=f"Request {ticket.ticket_id} is open for order {order_number}. "
                     "We'll email an insured label and next steps.",
            )
            return Resolution(
                module=module,
                messages=[f"Done—your {option} request is in."],
                session_patch={"lastIntent": intent.value, "missCount": 0},
                intent=intent,
            )

        module = ReturnOptionsModule(
            id=module_id("return-options", order_number),
            order_number=order_number,
            options=RETURN_OPTIONS,
        )
        return Resolution(
            module=module,
            messages=[f"What would you like to do with order {order_number}?"],
            session_patch={"lastIntent": intent.value, "missCount": 0},
            intent=intent,
        )

    async def _stylist_contact(
        self,
        payload: Dict[str, Any],
        action: Optional[ConversationAction],
        context: ResolverContext,
    ) -> Resolution:
        intent = ConciergeIntent.STYLIST_CONTACT
        shortlist = list(context.shortlist)

        if action is not None and action.type == "submit-escalation":
            name = str(payload.get("name") or "").strip()
            email = str(payload.get("email") or "").strip()
            notes = str(payload.get("notes") or "").strip()
            if not re.fullmatch(self.config.email_pattern, email):
                raise ValidationError("A valid email is required", details={"field": "email"})

            ticket = await self.provider.create_stylist_ticket(
                session_id=_session_id(context),
                name=name,
                email=email,
                notes=notes,
                shortlist=shortlist,
                priority="high" if shortlist else "normal",
            )
            module = InfoCardModule(
                id=module_id("info-card", intent.value, ticket.ticket_id),
                title="A stylist is on it",
                body=f"Ticket {ticket.ticket_id}. We'll reach out to {email} within one business day.",
            )
            return Resolution(
                module=module,
                messages=["Thanks—your request is with the studio."],
                session_patch={
                    "lastIntent": intent.value,
                    "escalation": {"name": "", "email": "", "notes": ""},
                    "missCount": 0,
                },
                intent=intent,
            )

        draft = context.escalation or EscalationContext()
        notes = draft.notes or ""
        if not notes and shortlist:
            notes = "Please review my shortlist: " + ", ".join(item.title for item in shortlist)
        prefill = EscalationPrefill(
            name=draft.name or "",
            email=draft.email or str(payload.get("email") or ""),
            notes=notes,
        )
        module = EscalationFormModule(
            id=module_id("escalation-form", prefill.to_wire()),
            prefill=prefill,
        )
        return Resolution(
            module=module,
            messages=["A stylist can take it from here."],
            session_patch={"lastIntent": intent.value, "missCount": 0},
            intent=intent,
        )

    async def _csat(
        self,
        payload: Dict[str, Any],
        action: Optional[ConversationAction],
        context: ResolverContext,
    ) -> Resolution:
        intent = ConciergeIntent.CSAT
        scale = self.config.csat_scale

        if action is not None and action.type == "submit-csat":
            response = payload.get("response") if isinstance(payload.get("response"), dict) else payload
            rating = str(response.get("rating") or "")
            if rating not in scale:
                raise ValidationError("Unknown rating", details={"allowed": list(scale)})
            score = scale[rating]
            notes = str(response.get("notes") or "")

            await self.provider.record_csat(
                session_id=_session_id(context),
                rating=rating,
                score=score,
                notes=notes,
                intent=context.last_intent,
            )

            if score <= self.config.negative_csat_max:
                module = InfoCardModule(
                    id=module_id("info-card", intent.value, rating),
                    title="Thanks for telling us",
                    body="I'm sorry we missed the mark. A stylist can follow up personally to make it right.",
                    links=[CardLink(label="Talk to a stylist", href="/support/stylist")],
                )
                messages = ["Want a stylist to follow up?"]
            else:
                module = InfoCardModule(
                    id=module_id("info-card", intent.value, rating),
                    title="Thank you",
                    body="Your feedback helps the studio keep every experience effortless.",
                )
                messages = []
            return Resolution(
                module=module,
                messages=messages,
                session_patch={"lastIntent": intent.value, "missCount": 0},
                intent=intent,
            )

        options = [
            ChoiceOption(value=rating, label=rating.capitalize())
            for rating, _ in sorted(scale.items(), key=lambda item: item[1], reverse=True)
        ]
        module = CsatModule(id=module_id("csat", [o.value for o in options]), options=options)
        return Resolution(
            module=module,
            messages=[],
            session_patch={"lastIntent": intent.value, "missCount": 0},
            intent=intent,
        )

    async def _info_card(
        self,
        intent: ConciergeIntent,
        payload: Dict[str, Any],
        action: Optional[ConversationAction],
        context: ResolverContext,
    ) -> Resolution:
        card = self.config.info_cards.get(intent.value, {})
        module = InfoCardModule(
            id=module_id("info-card", intent.value),
            title=card.get("title") or intent.value.replace("_", " ").title(),
            body=card.get("body") or "",
            links=[CardLink(**link) for link in card.get("links") or []],
        )
        return Resolution(
            module=module,
            messages=[],
            session_patch={"lastIntent": intent.value, "missCount": 0},
            intent=intent,
        )


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _session_id(context: ResolverContext) -> str:
    return context.session_id or "anonymous"


# 전역 리졸버 인스턴스
_resolver: Optional[IntentResolver] = None


def get_resolver() -> IntentResolver:
    """전역 리졸버 인스턴스 반환."""
    global _resolver
    if _resolver is None:
        from src.config import get_config

        from .provider import get_data_provider

        concierge = get_config().concierge
        _resolver = IntentResolver(concierge, concierge.flags, get_data_provider())
    return _resolver


def reset_resolver() -> None:
    """리졸버 리셋 (테스트용)."""
    global _resolver
    _resolver = None
