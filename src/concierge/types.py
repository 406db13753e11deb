"""컨시어지 모듈 페이로드 타입.

서버가 "다음에 보여줄 UI"를 기술하는 닫힌 태그 유니온과
위젯이 보내는 액션(`{type, data}`)을 정의합니다.

- `type` 태그가 채워지는 필드를 유일하게 결정합니다 (extra 필드 금지).
- 와이어 포맷은 camelCase, 파이썬 속성은 snake_case입니다.
- 알 수 없는 태그는 예외가 아니라 None으로 처리합니다 (서버/클라이언트 버전 차이 허용).
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from src.core.exceptions import ValidationError


class ConciergeIntent(str, Enum):
    """대화 턴의 의도."""

    FIND_PRODUCT = "find_product"
    TRACK_ORDER = "track_order"
    RETURN_EXCHANGE = "return_exchange"
    SIZING_REPAIRS = "sizing_repairs"
    CARE_WARRANTY = "care_warranty"
    FINANCING = "financing"
    STYLIST_CONTACT = "stylist_contact"
    CSAT = "csat"

    @classmethod
    def parse(cls, value: Any) -> Optional["ConciergeIntent"]:
        """문자열을 의도로 변환 (알 수 없으면 None)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


DEFAULT_CHOOSER_INTENTS = (
    ConciergeIntent.FIND_PRODUCT,
    ConciergeIntent.TRACK_ORDER,
    ConciergeIntent.STYLIST_CONTACT,
)


class WireModel(BaseModel):
    """camelCase 와이어 모델 베이스."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ============================================
# 공통 하위 타입
# ============================================


class ProductSummary(WireModel):
    """캐러셀/숏리스트에 표시되는 상품 요약."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    price: float = 0.0
    slug: Optional[str] = None
    image: Optional[str] = None
    metal: Optional[str] = None
    category: Optional[str] = None
    ready_to_ship: bool = False


class FilterOption(WireModel):
    value: str
    label: str


class FilterGroup(WireModel):
    key: str
    label: str
    options: List[FilterOption] = Field(default_factory=list)


class KnownOrderFields(WireModel):
    order_number: Optional[str] = None
    email: Optional[str] = None


class TimelineStep(WireModel):
    label: str
    state: Literal["done", "current", "upcoming"] = "upcoming"
    date: Optional[str] = None


class ReturnOption(WireModel):
    value: str
    label: str
    description: str = ""


class EscalationPrefill(WireModel):
    name: str = ""
    email: str = ""
    notes: str = ""


class ChoiceOption(WireModel):
    value: str
    label: str


class IntentOption(WireModel):
    intent: ConciergeIntent
    label: str


class CardLink(WireModel):
    label: str
    href: str


# ============================================
# 모듈 페이로드 (닫힌 유니온)
# ============================================


class ProductFilterModule(WireModel):
    type: Literal["product-filter"] = "product-filter"
    id: str
    title: str = "Narrow it down"
    filters: List[FilterGroup] = Field(default_factory=list)
    selected: Dict[str, Any] = Field(default_factory=dict)
    sort_options: List[ChoiceOption] = Field(default_factory=list)
    sort_by: Optional[str] = None


class ProductCarouselModule(WireModel):
    type: Literal["product-carousel"] = "product-carousel"
    id: str
    title: str = "Picks for you"
    products: List[ProductSummary] = Field(default_factory=list)
    empty_message: Optional[str] = None


class ShortlistPanelModule(WireModel):
    type: Literal["shortlist-panel"] = "shortlist-panel"
    id: str = "shortlist-panel"
    title: str = "My shortlist"
    items: List[ProductSummary] = Field(default_factory=list)
    cta_label: str = "Invite stylist to review"


class OrderLookupModule(WireModel):
    type: Literal["order-lookup"] = "order-lookup"
    id: str
    heading: str = "Find your order"
    known_fields: KnownOrderFields = Field(default_factory=KnownOrderFields)
    submit_label: str = "Look up order"
    error: Optional[str] = None


class OrderTimelineModule(WireModel):
    type: Literal["order-timeline"] = "order-timeline"
    id: str
    order_number: str
    status: str
    steps: List[TimelineStep] = Field(default_factory=list)
    offer_text_updates: bool = False


class ReturnOptionsModule(WireModel):
    type: Literal["return-options"] = "return-options"
    id: str
    order_number: str
    options: List[ReturnOption] = Field(default_factory=list)


class EscalationFormModule(WireModel):
    type: Literal["escalation-form"] = "escalation-form"
    id: str
    heading: str = "Talk to a stylist"
    description: str = "Share a few details and a stylist will reach out within one business day."
    submit_label: str = "Send to stylist"
    prefill: EscalationPrefill = Field(default_factory=EscalationPrefill)


class CsatModule(WireModel):
    type: Literal["csat"] = "csat"
    id: str
    question: str = "How did the concierge do today?"
    options: List[ChoiceOption] = Field(default_factory=list)


class IntentChooserModule(WireModel):
    type: Literal["intent-chooser"] = "intent-chooser"
    id: str
    headline: str = "What do you need?"
    description: str = "Pick an option to jump right into the right flow."
    options: List[IntentOption] = Field(default_factory=list)
    emphasize_human: bool = False


class InfoCardModule(WireModel):
    type: Literal["info-card"] = "info-card"
    id: str
    title: str
    body: str = ""
    links: List[CardLink] = Field(default_factory=list)


class ErrorNoticeModule(WireModel):
    type: Literal["error-notice"] = "error-notice"
    id: str
    message: str
    retryable: bool = True
    retry_action: Optional[Dict[str, Any]] = None


ModulePayload = Annotated[
    Union[
        ProductFilterModule,
        ProductCarouselModule,
        ShortlistPanelModule,
        OrderLookupModule,
        OrderTimelineModule,
        ReturnOptionsModule,
        EscalationFormModule,
        CsatModule,
        IntentChooserModule,
        InfoCardModule,
        ErrorNoticeModule,
    ],
    Field(discriminator="type"),
]

MODULE_CLASSES = (
    ProductFilterModule,
    ProductCarouselModule,
    ShortlistPanelModule,
    OrderLookupModule,
    OrderTimelineModule,
    ReturnOptionsModule,
    EscalationFormModule,
    CsatModule,
    IntentChooserModule,
    InfoCardModule,
    ErrorNoticeModule,
)

MODULE_TYPES = frozenset(cls.model_fields["type"].default for cls in MODULE_CLASSES)

_module_adapter: TypeAdapter = TypeAdapter(ModulePayload)


def parse_module_payload(data: Any) -> Optional[ModulePayload]:
    """와이어 딕셔너리를 모듈 페이로드로 변환.

    Returns:
        모듈 페이로드. 알 수 없는 `type`이면 None.

    Raises:
        ValidationError: 알려진 타입인데 필드가 잘못된 경우
    """
    if isinstance(data, MODULE_CLASSES):
        return data
    if not isinstance(data, Mapping) or data.get("type") not in MODULE_TYPES:
        return None
    try:
        return _module_adapter.validate_python(dict(data))
    except PydanticValidationError as e:
        raise ValidationError(
            f"Malformed {data.get('type')} module",
            details={"errors": e.errors(include_url=False, include_context=False)},
        )


def dump_module_payload(payload: ModulePayload) -> Dict[str, Any]:
    """모듈 페이로드를 camelCase 와이어 딕셔너리로 변환."""
    return payload.to_wire()


# ============================================
# 액션
# ============================================


class ConversationAction(BaseModel):
    """모듈 컴포넌트가 사용자 상호작용 시 방출하는 액션.

    디스패처가 정확히 한 번 소비하며 저장되지 않습니다.
    스키마 버전 필드가 없으므로 알 수 없는 필드는 무시합니다.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    type: str
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def from_wire(cls, obj: Any) -> "ConversationAction":
        """와이어 객체에서 액션 생성. 객체가 아닌 data는 버립니다."""
        if isinstance(obj, cls):
            return obj
        if not isinstance(obj, Mapping) or not isinstance(obj.get("type"), str):
            raise ValidationError("Action must be an object with a string type")
        data = obj.get("data")
        return cls(type=obj["type"], data=dict(data) if isinstance(data, Mapping) else None)

    def field(self, key: str, default: Any = None) -> Any:
        """data에서 값 조회."""
        return (self.data or {}).get(key, default)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"type": self.type}
        if self.data is not None:
            wire["data"] = self.data
        return wire


# 액션 타입 → 의도 (의도가 명시적으로 암시되는 액션만)
ACTION_INTENTS: Dict[str, ConciergeIntent] = {
    "submit-product-filters": ConciergeIntent.FIND_PRODUCT,
    "filter_change": ConciergeIntent.FIND_PRODUCT,
    "apply-filters": ConciergeIntent.FIND_PRODUCT,
    "submit-order-lookup": ConciergeIntent.TRACK_ORDER,
    "submit-return-option": ConciergeIntent.RETURN_EXCHANGE,
    "submit-escalation": ConciergeIntent.STYLIST_CONTACT,
    "shortlist-escalate": ConciergeIntent.STYLIST_CONTACT,
    "submit-csat": ConciergeIntent.CSAT,
}
