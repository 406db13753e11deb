"""모듈 렌더러.

모듈 페이로드의 `type` 태그를 HTML 조각으로 매핑합니다.

- 루트 요소는 하나이며 `data-module="<type>"`을 가집니다.
- 상호작용 요소(button, input, select, textarea)는 모두 `data-action` 또는
  소속 form의 `data-action`으로 `{type, data}` 액션을 표현합니다.
- `is_processing`이면 모든 상호작용 요소에 `disabled`가 붙습니다.
  링크는 `aria-disabled`로 표시하고 href를 뺍니다.
- 알 수 없는 타입은 빈 문자열을 반환합니다 (예외 없음).
"""

from __future__ import annotations

import json
import logging
from html import escape
from typing import Any, Callable, Dict, Mapping, Optional, Union

from src.core.exceptions import ValidationError
from src.monitoring.metrics import track_render

from .types import (
    MODULE_TYPES,
    CsatModule,
    EscalationFormModule,
    ErrorNoticeModule,
    InfoCardModule,
    IntentChooserModule,
    ModulePayload,
    OrderLookupModule,
    OrderTimelineModule,
    ProductCarouselModule,
    ProductFilterModule,
    ProductSummary,
    ReturnOptionsModule,
    ShortlistPanelModule,
    parse_module_payload,
)

logger = logging.getLogger(__name__)

Renderer = Callable[[Any, str], str]


# ============================================
# 헬퍼
# ============================================


def _attr(value: Any) -> str:
    return escape(str(value), quote=True)


def _payload_attr(data: Optional[Mapping[str, Any]]) -> str:
    if not data:
        return ""
    return f' data-payload="{_attr(json.dumps(data, ensure_ascii=False, sort_keys=True))}"'


def _button(label: str, action_type: str, disabled: str, data: Optional[Mapping[str, Any]] = None,
            css: str = "concierge-button") -> str:
    return (
        f'<button type="button" class="{css}" data-action="{_attr(action_type)}"'
        f"{_payload_attr(data)}{disabled}>{escape(label)}</button>"
    )


def _submit(label: str, action_type: str, disabled: str) -> str:
    return (
        f'<button type="submit" class="concierge-button concierge-button--primary" '
        f'data-action="{_attr(action_type)}"{disabled}>{escape(label)}</button>'
    )


def _price(value: float) -> str:
    return f"${value:,.0f}"


def _product_card(product: ProductSummary, disabled: str) -> str:
    product_data = {"product": product.to_wire()}
    image = f'<img src="{_attr(product.image)}" alt="{_attr(product.title)}" loading="lazy">' if product.image else ""
    meta = " · ".join(escape(part) for part in (product.metal, product.category) if part)
    badge = '<span class="badge">Ready to ship</span>' if product.ready_to_ship else ""
    return (
        f'<li class="product-card" data-product-id="{_attr(product.id)}">'
        f"{image}"
        f'<p class="product-card__title">{escape(product.title)}</p>'
        f'<p class="product-card__price">{_price(product.price)}</p>'
        f'<p class="product-card__meta">{meta}</p>{badge}'
        f'{_button("View", "view-product", disabled, product_data)}'
        f'{_button("Save", "shortlist-product", disabled, product_data)}'
        "</li>"
    )


def _root(payload: Any, inner: str, extra_class: str = "") -> str:
    css = f"concierge-module concierge-module--{payload.type}"
    if extra_class:
        css += f" {extra_class}"
    return (
        f'<section class="{css}" data-module="{_attr(payload.type)}" '
        f'data-module-id="{_attr(payload.id)}">{inner}</section>'
    )


# ============================================
# 모듈별 렌더러
# ============================================


def render_product_filter(payload: ProductFilterModule, disabled: str) -> str:
    groups = []
    for group in payload.filters:
        current = payload.selected.get(group.key)
        options = [f'<option value=""{"" if current else " selected"}>Any</option>']
        for option in group.options:
            selected = " selected" if str(current).lower() == option.value.lower() else ""
            options.append(f'<option value="{_attr(option.value)}"{selected}>{escape(option.label)}</option>')
        groups.append(
            f'<label class="filter-group">{escape(group.label)}'
            f'<select name="{_attr(group.key)}"{disabled}>{"".join(options)}</select></label>'
        )

    sort = ""
    if payload.sort_options:
        sort_options = "".join(
            f'<option value="{_attr(o.value)}"{" selected" if o.value == payload.sort_by else ""}>{escape(o.label)}</option>'
            for o in payload.sort_options
        )
        sort = f'<label class="filter-group">Sort<select name="sortBy"{disabled}>{sort_options}</select></label>'

    inner = (
        f"<h3>{escape(payload.title)}</h3>"
        f'<form data-action="submit-product-filters">{"".join(groups)}{sort}'
        f'{_submit("Show pieces", "submit-product-filters", disabled)}</form>'
    )
    return _root(payload, inner)


def render_product_carousel(payload: ProductCarouselModule, disabled: str) -> str:
    if not payload.products:
        empty = payload.empty_message or "Nothing to show yet."
        inner = (
            f"<h3>{escape(payload.title)}</h3>"
            f'<p class="concierge-empty">{escape(empty)}</p>'
            + _button(
                "Show ready-to-ship picks",
                "apply-filters",
                disabled,
                {"slug": "ready-to-ship", "filters": {"readyToShip": True}},
            )
        )
        return _root(payload, inner)

    cards = "".join(_product_card(product, disabled) for product in payload.products)
    return _root(payload, f'<h3>{escape(payload.title)}</h3><ul class="product-carousel">{cards}</ul>')


def render_shortlist_panel(payload: ShortlistPanelModule, disabled: str) -> str:
    if payload.items:
        rows = "".join(
            f'<li data-product-id="{_attr(item.id)}">{escape(item.title)} <span>{_price(item.price)}</span>'
            f'{_button("Remove", "shortlist-remove", disabled, {"productId": item.id}, "concierge-link")}</li>'
            for item in payload.items
        )
        body = f'<ul class="shortlist">{rows}</ul>'
    else:
        body = '<p class="concierge-empty">No saved pieces yet.</p>'

    count = len(payload.items)
    inner = (
        f"<h3>{escape(payload.title)} <small>({count})</small></h3>{body}"
        f'<div class="concierge-actions">'
        f'{_button(payload.cta_label, "shortlist-escalate", disabled, None, "concierge-button concierge-button--primary")}'
        f'{_button("Clear", "shortlist-clear", disabled)}'
        "</div>"
    )
    return _root(payload, inner)


def render_order_lookup(payload: OrderLookupModule, disabled: str) -> str:
    known = payload.known_fields
    error = f'<p class="concierge-error" role="alert">{escape(payload.error)}</p>' if payload.error else ""
    inner = (
        f"<h3>{escape(payload.heading)}</h3>{error}"
        '<form data-action="submit-order-lookup">'
        f'<label>Order number<input type="text" name="orderNumber" value="{_attr(known.order_number or "")}"{disabled}></label>'
        f'<label>Email<input type="email" name="email" value="{_attr(known.email or "")}"{disabled}></label>'
        f'{_submit(payload.submit_label, "submit-order-lookup", disabled)}'
        "</form>"
    )
    return _root(payload, inner)


def render_order_timeline(payload: OrderTimelineModule, disabled: str) -> str:
    steps = "".join(
        f'<li class="timeline-step timeline-step--{step.state}">{escape(step.label)}'
        + (f' <time>{escape(step.date)}</time>' if step.date else "")
        + "</li>"
        for step in payload.steps
    )
    updates = ""
    if payload.offer_text_updates:
        updates = _button("Text me updates", "text-updates", disabled, {"orderNumber": payload.order_number})
    inner = (
        f"<h3>Order {escape(payload.order_number)}</h3>"
        f'<p class="order-status">{escape(payload.status)}</p>'
        f'<ol class="timeline">{steps}</ol>{updates}'
    )
    return _root(payload, inner)


def render_return_options(payload: ReturnOptionsModule, disabled: str) -> str:
    options = "".join(
        f'<label class="return-option"><input type="radio" name="option" value="{_attr(o.value)}"{disabled}>'
        f"<strong>{escape(o.label)}</strong> <span>{escape(o.description)}</span></label>"
        for o in payload.options
    )
    inner = (
        f"<h3>Order {escape(payload.order_number)}</h3>"
        '<form data-action="submit-return-option">'
        f"{options}"
        f'<label>Notes<textarea name="notes"{disabled}></textarea></label>'
        f'{_submit("Continue", "submit-return-option", disabled)}'
        "</form>"
    )
    return _root(payload, inner)


def render_escalation_form(payload: EscalationFormModule, disabled: str) -> str:
    prefill = payload.prefill
    inner = (
        f"<h3>{escape(payload.heading)}</h3>"
        f"<p>{escape(payload.description)}</p>"
        '<form data-action="submit-escalation">'
        f'<label>Name<input type="text" name="name" value="{_attr(prefill.name)}"{disabled}></label>'
        f'<label>Email<input type="email" name="email" value="{_attr(prefill.email)}" required{disabled}></label>'
        f'<label>Notes<textarea name="notes"{disabled}>{escape(prefill.notes)}</textarea></label>'
        f'{_submit(payload.submit_label, "submit-escalation", disabled)}'
        "</form>"
    )
    return _root(payload, inner)


def render_csat(payload: CsatModule, disabled: str) -> str:
    buttons = "".join(
        _button(option.label, "submit-csat", disabled, {"response": {"rating": option.value}})
        for option in payload.options
    )
    return _root(payload, f'<p class="csat-question">{escape(payload.question)}</p><div class="csat-options">{buttons}</div>')


def render_intent_chooser(payload: IntentChooserModule, disabled: str) -> str:
    buttons = []
    for option in payload.options:
        css = "concierge-button"
        if payload.emphasize_human and option.intent.value == "stylist_contact":
            css += " concierge-button--primary"
        buttons.append(_button(option.label, "intent-chooser-select", disabled, {"intent": option.intent.value}, css))

    note = ""
    if payload.emphasize_human:
        note = '<p class="concierge-note">Prefer a person? A stylist is ready to help.</p>'
    inner = (
        f"<h3>{escape(payload.headline)}</h3>"
        f"<p>{escape(payload.description)}</p>"
        f'<div class="concierge-actions">{"".join(buttons)}</div>{note}'
    )
    return _root(payload, inner, "is-emphasized" if payload.emphasize_human else "")


def _link(label: str, href: str, disabled: str) -> str:
    # 비활성 링크는 href를 빼서 이동/포커스를 막음
    if disabled:
        return f'<a class="is-disabled" aria-disabled="true" tabindex="-1">{escape(label)}</a>'
    return f'<a href="{_attr(href)}">{escape(label)}</a>'


def render_info_card(payload: InfoCardModule, disabled: str) -> str:
    links = "".join(_link(link.label, link.href, disabled) for link in payload.links)
    inner = f"<h3>{escape(payload.title)}</h3><p>{escape(payload.body)}</p>"
    if links:
        inner += f'<nav class="concierge-links">{links}</nav>'
    return _root(payload, inner)


def render_error_notice(payload: ErrorNoticeModule, disabled: str) -> str:
    inner = f'<p class="concierge-error" role="alert">{escape(payload.message)}</p>'
    retry = payload.retry_action
    if payload.retryable and retry and isinstance(retry.get("type"), str):
        inner += _button("Try again", retry["type"], disabled, retry.get("data"))
    return _root(payload, inner)


_RENDERERS: Dict[str, Renderer] = {
    "product-filter": render_product_filter,
    "product-carousel": render_product_carousel,
    "shortlist-panel": render_shortlist_panel,
    "order-lookup": render_order_lookup,
    "order-timeline": render_order_timeline,
    "return-options": render_return_options,
    "escalation-form": render_escalation_form,
    "csat": render_csat,
    "intent-chooser": render_intent_chooser,
    "info-card": render_info_card,
    "error-notice": render_error_notice,
}

# 모듈 타입 추가 시 유니온과 렌더러 등록을 함께 갱신해야 함
if set(_RENDERERS) != set(MODULE_TYPES):
    raise RuntimeError(
        f"렌더러 등록 불일치: missing={sorted(set(MODULE_TYPES) - set(_RENDERERS))}, "
        f"extra={sorted(set(_RENDERERS) - set(MODULE_TYPES))}"
    )


def renderer_for(module_type: str) -> Optional[Renderer]:
    """타입 태그에 대한 렌더러 (없으면 None)."""
    return _RENDERERS.get(module_type)


def registered_types() -> frozenset:
    """등록된 렌더러 타입 집합."""
    return frozenset(_RENDERERS)


def render_module(payload: Union[ModulePayload, Mapping[str, Any], None], is_processing: bool = False) -> str:
    """모듈을 HTML 조각으로 렌더링.

    Args:
        payload: 모듈 페이로드 또는 와이어 딕셔너리
        is_processing: True면 모든 상호작용 요소 비활성화

    Returns:
        HTML 문자열. 알 수 없는 타입이나 잘못된 페이로드면 빈 문자열.
    """
    try:
        module = parse_module_payload(payload)
    except ValidationError as e:
        logger.warning(f"잘못된 모듈 페이로드 렌더링 생략: {e.message}")
        return ""

    if module is None:
        module_type = payload.get("type") if isinstance(payload, Mapping) else type(payload).__name__
        logger.warning(f"알 수 없는 모듈 타입 렌더링 생략: {module_type}")
        return ""

    renderer = _RENDERERS[module.type]
    html = renderer(module, " disabled" if is_processing else "")
    track_render(module.type)
    return html
