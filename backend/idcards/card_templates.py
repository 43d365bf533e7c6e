from __future__ import annotations

from dataclasses import dataclass, field, fields
import math
from typing import Any, ClassVar

from django.core.exceptions import ValidationError

from .card_registry import validate_template

CREDIT_CARD_WIDTH_IN = 3.375
CREDIT_CARD_HEIGHT_IN = 2.125


@dataclass(frozen=True)
class CardElement:
    kind: ClassVar[str] = ""

    id: str
    x: float
    y: float
    width: float | None = None
    height: float | None = None


@dataclass(frozen=True)
class RectangleElement(CardElement):
    kind: ClassVar[str] = "rectangle"

    background_color: str | None = None
    opacity: float = 1.0
    border_color: str | None = None
    border_width: float | None = None


@dataclass(frozen=True)
class CircleElement(CardElement):
    kind: ClassVar[str] = "circle"

    background_color: str = "#000000"
    radius: float = 0.0


@dataclass(frozen=True)
class LineElement(CardElement):
    kind: ClassVar[str] = "line"

    border_color: str = "#000000"
    border_width: float = 1.0


@dataclass(frozen=True)
class TextElement(CardElement):
    kind: ClassVar[str] = "text"

    text: str = ""
    font_size: float = 12.0
    font_weight: str = "normal"
    color: str = "#000000"
    align: str = "left"


@dataclass(frozen=True)
class ImageElement(CardElement):
    kind: ClassVar[str] = "image"

    source: str = ""
    border_color: str | None = None
    border_width: float | None = None


@dataclass(frozen=True)
class QRCodeElement(CardElement):
    kind: ClassVar[str] = "qrcode"


@dataclass(frozen=True)
class UnknownElement(CardElement):
    """Element of a kind this version cannot draw. Render targets skip it."""

    kind: ClassVar[str] = "unknown"

    type_name: str = ""


ELEMENT_CLASSES: dict[str, type[CardElement]] = {
    cls.kind: cls
    for cls in (
        RectangleElement,
        CircleElement,
        LineElement,
        TextElement,
        ImageElement,
        QRCodeElement,
    )
}


@dataclass(frozen=True)
class CardTemplate:
    id: str
    name: str
    width: float
    height: float
    category: str = ""
    description: str = ""
    background_color: str = "#ffffff"
    elements: tuple[CardElement, ...] = field(default_factory=tuple)


# Payload keys follow the camelCase naming used by the template JSON.
_PAYLOAD_KEYS = {
    "background_color": "backgroundColor",
    "border_color": "borderColor",
    "border_width": "borderWidth",
    "font_size": "fontSize",
    "font_weight": "fontWeight",
}
_NUMERIC_FIELDS = {"x", "y", "width", "height", "opacity", "border_width", "radius", "font_size"}
_OPTIONAL_NUMERIC_FIELDS = {"width", "height", "border_width"}


def _payload_key(field_name: str) -> str:
    return _PAYLOAD_KEYS.get(field_name, field_name)


def _read_field(raw: dict[str, Any], field_name: str) -> Any:
    camel_key = _payload_key(field_name)
    if camel_key in raw:
        return raw[camel_key]
    return raw.get(field_name)


def _coerce_number(value: Any, *, field_path: str, optional: bool) -> float | None:
    if value is None or value == "":
        if optional:
            return None
        raise ValidationError({field_path: "This field is required."})
    if isinstance(value, bool):
        raise ValidationError({field_path: "Must be a number."})
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError({field_path: "Must be a number."}) from exc
    if not math.isfinite(number):
        raise ValidationError({field_path: "Must be a finite number."})
    return number


def element_from_payload(raw: dict[str, Any], *, element_path: str = "element") -> CardElement:
    if not isinstance(raw, dict):
        raise ValidationError({element_path: "Each element must be an object."})
    element_type = str(raw.get("type") or "").strip().lower()
    element_class = ELEMENT_CLASSES.get(element_type, UnknownElement)

    kwargs: dict[str, Any] = {"id": str(raw.get("id") or "")}
    for dataclass_field in fields(element_class):
        name = dataclass_field.name
        if name == "id":
            continue
        if name == "type_name":
            kwargs[name] = element_type
            continue
        value = _read_field(raw, name)
        if name in _NUMERIC_FIELDS:
            optional = name in _OPTIONAL_NUMERIC_FIELDS or name not in {"x", "y"}
            number = _coerce_number(
                value,
                field_path=f"{element_path}.{_payload_key(name)}",
                optional=optional,
            )
            if number is not None:
                kwargs[name] = number
            elif name in _OPTIONAL_NUMERIC_FIELDS:
                kwargs[name] = None
        elif value is not None:
            kwargs[name] = str(value)
    return element_class(**kwargs)


def element_to_payload(element: CardElement) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": element.type_name if isinstance(element, UnknownElement) else element.kind
    }
    for dataclass_field in fields(element):
        if dataclass_field.name == "type_name":
            continue
        value = getattr(element, dataclass_field.name)
        if value is None:
            continue
        payload[_payload_key(dataclass_field.name)] = value
    return payload


def template_from_payload(payload: Any) -> CardTemplate:
    if not isinstance(payload, dict):
        raise ValidationError({"template": "Template must be a JSON object."})
    elements_payload = payload.get("elements") or []
    if not isinstance(elements_payload, list):
        raise ValidationError({"elements": "Must be a list."})

    elements = tuple(
        element_from_payload(raw, element_path=f"elements[{index}]")
        for index, raw in enumerate(elements_payload)
    )
    template = CardTemplate(
        id=str(payload.get("id") or "custom"),
        name=str(payload.get("name") or "Custom template"),
        category=str(payload.get("category") or ""),
        description=str(payload.get("description") or ""),
        width=_coerce_number(payload.get("width"), field_path="width", optional=False),
        height=_coerce_number(payload.get("height"), field_path="height", optional=False),
        background_color=str(
            payload.get("backgroundColor") or payload.get("background_color") or "#ffffff"
        ),
        elements=elements,
    )
    validate_template(template)
    return template


def template_to_payload(template: CardTemplate) -> dict[str, Any]:
    return {
        "id": template.id,
        "name": template.name,
        "category": template.category,
        "description": template.description,
        "width": template.width,
        "height": template.height,
        "backgroundColor": template.background_color,
        "elements": [element_to_payload(element) for element in template.elements],
    }


_CATALOGUE: dict[str, CardTemplate] = {}


def register(template: CardTemplate) -> CardTemplate:
    validate_template(template)
    if template.id in _CATALOGUE:
        raise ValidationError({"id": f"Template '{template.id}' is already registered."})
    _CATALOGUE[template.id] = template
    return template


def get_template(template_id: str) -> CardTemplate | None:
    return _CATALOGUE.get(str(template_id or "").strip())


def list_templates() -> list[CardTemplate]:
    return list(_CATALOGUE.values())


def default_template_id() -> str:
    return next(iter(_CATALOGUE))


register(
    CardTemplate(
        id="classic-professional",
        name="Classic Professional",
        category="Professional",
        description="Navy header with logo, photo on the left and a verification QR code.",
        width=CREDIT_CARD_WIDTH_IN,
        height=CREDIT_CARD_HEIGHT_IN,
        background_color="#ffffff",
        elements=(
            RectangleElement("header", 0, 0, 3.375, 0.55, background_color="#1e3a8a"),
            ImageElement("logo", 0.1, 0.08, 0.4, 0.4, source="{{logo_url}}"),
            TextElement(
                "company", 0.6, 0.15, 2.6, 0.3,
                text="{{company_name}}", font_size=14, font_weight="bold", color="#ffffff",
            ),
            ImageElement(
                "photo", 0.15, 0.7, 0.8, 1.0,
                source="{{employee_photo}}", border_color="#1e3a8a", border_width=2,
            ),
            TextElement(
                "name", 1.1, 0.7, 1.45, 0.25,
                text="{{employee_name}}", font_size=12, font_weight="bold", color="#111827",
            ),
            TextElement("employee-id", 1.1, 0.95, 1.45, 0.2, text="ID: {{employee_id}}", font_size=9),
            TextElement(
                "designation", 1.1, 1.15, 1.45, 0.2,
                text="{{designation_name}}", font_size=9, color="#1e3a8a",
            ),
            TextElement("location", 1.1, 1.35, 1.45, 0.2, text="{{location_name}}", font_size=8, color="#4b5563"),
            TextElement(
                "validity", 1.1, 1.6, 1.45, 0.2,
                text="Valid: {{id_valid_from_short}} - {{id_valid_until_short}}", font_size=7, color="#4b5563",
            ),
            QRCodeElement("qr", 2.65, 0.7, 0.6, 0.6),
            TextElement("scan-hint", 2.55, 1.32, 0.8, 0.15, text="Scan to verify", font_size=6, align="center"),
            LineElement("footer-rule", 0, 1.95, 3.375, border_color="#1e3a8a", border_width=2),
        ),
    )
)

register(
    CardTemplate(
        id="modern-accent",
        name="Modern Accent",
        category="Modern",
        description="Light card with a circular accent and centred details.",
        width=CREDIT_CARD_WIDTH_IN,
        height=CREDIT_CARD_HEIGHT_IN,
        background_color="#f8fafc",
        elements=(
            CircleElement("accent", 2.3, 0.05, 1.0, 1.0, background_color="#7c3aed", radius=0.5),
            RectangleElement("band", 0, 1.8, 3.375, 0.325, background_color="#7c3aed", opacity=0.9),
            ImageElement(
                "photo", 0.2, 0.25, 0.9, 1.1,
                source="{{employee_photo}}", border_color="#7c3aed", border_width=1,
            ),
            TextElement(
                "name", 1.25, 0.3, 1.9, 0.3,
                text="{{employee_name}}", font_size=13, font_weight="bold", color="#1f2937",
            ),
            TextElement("designation", 1.25, 0.62, 1.9, 0.2, text="{{designation_name}}", font_size=9, color="#7c3aed"),
            TextElement("department", 1.25, 0.82, 1.9, 0.2, text="{{department_name}}", font_size=8, color="#4b5563"),
            TextElement("employee-id", 1.25, 1.05, 1.2, 0.2, text="{{employee_id}}", font_size=9, font_weight="bold"),
            QRCodeElement("qr", 2.6, 1.0, 0.6, 0.6),
            TextElement(
                "company", 0.2, 1.88, 2.975, 0.2,
                text="{{company_name}}", font_size=9, font_weight="bold", color="#ffffff", align="center",
            ),
        ),
    )
)

register(
    CardTemplate(
        id="premium-gold",
        name="Premium Gold",
        category="Premium",
        description="Dark card with gold trim for senior staff.",
        width=CREDIT_CARD_WIDTH_IN,
        height=CREDIT_CARD_HEIGHT_IN,
        background_color="#111827",
        elements=(
            RectangleElement(
                "frame", 0.08, 0.08, 3.215, 1.965,
                border_color="#d4af37", border_width=2,
            ),
            ImageElement("logo", 0.2, 0.18, 0.35, 0.35, source="{{logo_url}}"),
            TextElement(
                "company", 0.65, 0.22, 2.5, 0.3,
                text="{{company_name}}", font_size=12, font_weight="bold", color="#d4af37",
            ),
            LineElement("rule", 0.2, 0.62, 2.975, border_color="#d4af37", border_width=1),
            ImageElement(
                "photo", 0.2, 0.75, 0.8, 1.0,
                source="{{employee_photo}}", border_color="#d4af37", border_width=2,
            ),
            TextElement(
                "name", 1.15, 0.78, 1.4, 0.25,
                text="{{employee_name}}", font_size=12, font_weight="bold", color="#ffffff",
            ),
            TextElement("designation", 1.15, 1.05, 1.4, 0.2, text="{{designation_name}}", font_size=9, color="#d4af37"),
            TextElement("employee-id", 1.15, 1.28, 1.4, 0.2, text="ID {{employee_id}}", font_size=8, color="#e5e7eb"),
            TextElement(
                "validity", 1.15, 1.5, 1.4, 0.2,
                text="Until {{id_valid_until_short}}", font_size=7, color="#9ca3af",
            ),
            QRCodeElement("qr", 2.6, 0.8, 0.6, 0.6),
        ),
    )
)

register(
    CardTemplate(
        id="security-badge",
        name="Security Badge",
        category="Security",
        description="High-visibility badge for guards on site.",
        width=CREDIT_CARD_WIDTH_IN,
        height=CREDIT_CARD_HEIGHT_IN,
        background_color="#ffffff",
        elements=(
            RectangleElement("header", 0, 0, 3.375, 0.45, background_color="#b91c1c"),
            TextElement(
                "title", 0.15, 0.1, 3.075, 0.3,
                text="SECURITY", font_size=16, font_weight="bold", color="#ffffff", align="center",
            ),
            ImageElement(
                "photo", 0.15, 0.6, 0.85, 1.05,
                source="{{employee_photo}}", border_color="#b91c1c", border_width=2,
            ),
            TextElement(
                "name", 1.15, 0.6, 1.4, 0.25,
                text="{{employee_name}}", font_size=12, font_weight="bold",
            ),
            TextElement(
                "designation", 1.15, 0.88, 1.4, 0.2,
                text="{{designation_name}}", font_size=9, font_weight="bold", color="#b91c1c",
            ),
            TextElement("location", 1.15, 1.1, 1.4, 0.35, text="Post: {{location_name}}", font_size=8),
            TextElement("phone", 1.15, 1.45, 1.4, 0.2, text="{{employee_phone}}", font_size=8, color="#4b5563"),
            QRCodeElement("qr", 2.65, 0.6, 0.6, 0.6),
            TextElement("employee-id", 2.55, 1.25, 0.8, 0.2, text="{{employee_id}}", font_size=8, align="center"),
            RectangleElement("footer", 0, 1.8, 3.375, 0.325, background_color="#fee2e2"),
            TextElement(
                "company", 0.15, 1.86, 3.075, 0.2,
                text="{{company_name}}", font_size=8, color="#7f1d1d", align="center",
            ),
        ),
    )
)

register(
    CardTemplate(
        id="healthcare-staff",
        name="Healthcare Staff",
        category="Specialized",
        description="Card for staff posted at hospitals and health centres.",
        width=CREDIT_CARD_WIDTH_IN,
        height=CREDIT_CARD_HEIGHT_IN,
        background_color="#ffffff",
        elements=(
            RectangleElement("side-bar", 0, 0, 0.3, 2.125, background_color="#047857"),
            ImageElement("logo", 0.45, 0.12, 0.35, 0.35, source="{{logo_url}}"),
            TextElement(
                "company", 0.9, 0.17, 2.3, 0.3,
                text="{{company_name}}", font_size=11, font_weight="bold", color="#047857",
            ),
            ImageElement("photo", 0.45, 0.6, 0.8, 1.0, source="{{employee_photo}}"),
            TextElement(
                "name", 1.4, 0.6, 1.2, 0.25,
                text="{{employee_name}}", font_size=11, font_weight="bold",
            ),
            TextElement("designation", 1.4, 0.88, 1.2, 0.2, text="{{designation_name}}", font_size=8, color="#047857"),
            TextElement("location", 1.4, 1.08, 1.2, 0.35, text="{{location_name}}", font_size=7, color="#4b5563"),
            TextElement(
                "validity", 1.4, 1.45, 1.2, 0.2,
                text="{{id_valid_from_short}} to {{id_valid_until_short}}", font_size=7,
            ),
            QRCodeElement("qr", 2.7, 0.65, 0.55, 0.55),
            CircleElement("status-dot", 3.05, 1.85, 0.15, 0.15, background_color="#10b981", radius=0.075),
            TextElement("employee-id", 0.45, 1.8, 2.4, 0.2, text="ID: {{employee_id}}", font_size=8, font_weight="bold"),
        ),
    )
)
