from __future__ import annotations

import math
import re
from typing import TYPE_CHECKING, Any

from django.core.exceptions import ValidationError

if TYPE_CHECKING:
    from .card_templates import CardTemplate


TOKEN_REGISTRY = [
    {
        "key": "company_name",
        "label": "Company name",
        "description": "Name from company settings.",
        "kind": "text",
    },
    {
        "key": "employee_name",
        "label": "Employee name",
        "description": "Full name of the employee.",
        "kind": "text",
    },
    {
        "key": "employee_id",
        "label": "Employee ID",
        "description": "Employee identifier (SF-XXXX).",
        "kind": "text",
    },
    {
        "key": "employee_phone",
        "label": "Employee phone",
        "description": "Contact number of the employee.",
        "kind": "text",
    },
    {
        "key": "designation_name",
        "label": "Designation",
        "description": "Name of the employee's designation.",
        "kind": "text",
    },
    {
        "key": "department_name",
        "label": "Department",
        "description": "Name of the employee's department.",
        "kind": "text",
    },
    {
        "key": "location_name",
        "label": "Location",
        "description": "Name of the employee's assigned location.",
        "kind": "text",
    },
    {
        "key": "id_valid_from_short",
        "label": "Card valid from",
        "description": "Card validity start date (d/m/yyyy).",
        "kind": "text",
    },
    {
        "key": "id_valid_until_short",
        "label": "Card valid until",
        "description": "Card validity end date (d/m/yyyy).",
        "kind": "text",
    },
    {
        "key": "logo_url",
        "label": "Company logo",
        "description": "Logo reference from company settings.",
        "kind": "image",
    },
    {
        "key": "employee_photo",
        "label": "Employee photo",
        "description": "Photo reference of the employee.",
        "kind": "image",
    },
]

TEXT_TOKENS = {token["key"] for token in TOKEN_REGISTRY if token["kind"] == "text"}
IMAGE_TOKENS = {token["key"] for token in TOKEN_REGISTRY if token["kind"] == "image"}
ALLOWED_TOKENS = TEXT_TOKENS | IMAGE_TOKENS
TOKEN_PATTERN = re.compile(r"\{\{(\w+)\}\}")

ELEMENT_TYPES = ("rectangle", "circle", "line", "text", "image", "qrcode")
FONT_WEIGHTS = {"normal", "bold"}
TEXT_ALIGNMENTS = {"left", "center", "right"}

# Definition-time upper bounds.
MAX_CARD_SIZE_IN = 12.0
MAX_FONT_SIZE_PX = 400.0


def token_registry_payload() -> list[dict[str, str]]:
    return [dict(token) for token in TOKEN_REGISTRY]


def _as_finite(value: Any, *, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError({field_name: "Must be a number in inches."}) from exc
    if not math.isfinite(number):
        raise ValidationError({field_name: "Must be a finite number."})
    return number


def _require_positive(value: Any, *, field_name: str, maximum: float | None = None) -> None:
    if value is None:
        return
    number = _as_finite(value, field_name=field_name)
    if number <= 0:
        raise ValidationError({field_name: "Must be > 0 inches."})
    if maximum is not None and number > maximum:
        raise ValidationError({field_name: f"Must be <= {maximum:g}."})


def _require_non_negative(value: Any, *, field_name: str) -> None:
    number = _as_finite(value, field_name=field_name)
    if number < 0:
        raise ValidationError({field_name: "Must be >= 0 inches."})


def validate_template(template: CardTemplate) -> None:
    """Check a template once, when it is defined.

    Rendering never re-validates; anything that passes here is assumed to be
    drawable by every render target.
    """
    if not str(template.id or "").strip():
        raise ValidationError({"id": "Template id is required."})
    _require_positive(template.width, field_name="width", maximum=MAX_CARD_SIZE_IN)
    _require_positive(template.height, field_name="height", maximum=MAX_CARD_SIZE_IN)

    seen_ids: set[str] = set()
    for index, element in enumerate(template.elements):
        element_path = f"elements[{index}]"
        element_id = str(element.id or "").strip()
        if not element_id:
            raise ValidationError({f"{element_path}.id": "Element id is required."})
        if element_id in seen_ids:
            raise ValidationError(
                {f"{element_path}.id": f"Duplicate element id '{element_id}'."}
            )
        seen_ids.add(element_id)

        _require_non_negative(element.x, field_name=f"{element_path}.x")
        _require_non_negative(element.y, field_name=f"{element_path}.y")
        _require_positive(element.width, field_name=f"{element_path}.width")
        _require_positive(element.height, field_name=f"{element_path}.height")

        kind = element.kind
        if kind == "rectangle":
            opacity = _as_finite(element.opacity, field_name=f"{element_path}.opacity")
            if opacity < 0 or opacity > 1:
                raise ValidationError(
                    {f"{element_path}.opacity": "Must be between 0 and 1."}
                )
        elif kind == "circle":
            _require_positive(element.radius, field_name=f"{element_path}.radius")
        elif kind == "text":
            if element.font_weight not in FONT_WEIGHTS:
                raise ValidationError(
                    {f"{element_path}.fontWeight": f"Unsupported font weight '{element.font_weight}'."}
                )
            if element.align not in TEXT_ALIGNMENTS:
                raise ValidationError(
                    {f"{element_path}.align": f"Unsupported alignment '{element.align}'."}
                )
            _require_positive(
                element.font_size, field_name=f"{element_path}.fontSize", maximum=MAX_FONT_SIZE_PX
            )
