from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from .card_registry import TOKEN_PATTERN


@dataclass(frozen=True)
class EmployeeRecord:
    employee_id: str = ""
    name: str = ""
    phone: str = ""
    photo_url: str | None = None
    status: str = ""
    id_card_valid_from: date | None = None
    id_card_valid_until: date | None = None
    department_name: str = ""
    designation_name: str = ""
    location_name: str = ""


@dataclass(frozen=True)
class CompanySettingsRecord:
    company_name: str = ""
    logo_url: str | None = None


@dataclass(frozen=True)
class DataContext:
    employee: EmployeeRecord = field(default_factory=EmployeeRecord)
    company: CompanySettingsRecord = field(default_factory=CompanySettingsRecord)


def format_short_date(value: date | datetime | str | None) -> str:
    """Day/month/year without zero padding, e.g. ``1/1/2024``."""
    if value is None or value == "":
        return ""
    if isinstance(value, str):
        try:
            value = date.fromisoformat(value[:10])
        except ValueError:
            return ""
    return f"{value.day}/{value.month}/{value.year}"


def _token_values(context: DataContext) -> dict[str, str]:
    employee = context.employee
    company = context.company
    return {
        "company_name": company.company_name or "",
        "employee_name": employee.name or "",
        "employee_id": employee.employee_id or "",
        "employee_phone": employee.phone or "",
        "designation_name": employee.designation_name or "",
        "department_name": employee.department_name or "",
        "location_name": employee.location_name or "",
        "id_valid_from_short": format_short_date(employee.id_card_valid_from),
        "id_valid_until_short": format_short_date(employee.id_card_valid_until),
        "logo_url": company.logo_url or "",
        "employee_photo": employee.photo_url or "",
    }


def substitute(text: Any, context: DataContext) -> str:
    """Replace ``{{token}}`` placeholders in a single pass.

    Known tokens with no source value become an empty string. Unknown tokens
    and stray braces are left in the text as written. Replacement values are
    never scanned again, so a value that itself contains ``{{...}}`` is
    emitted literally.
    """
    if not text:
        return ""
    values = _token_values(context)

    def _replace(match) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        return values[key]

    return TOKEN_PATTERN.sub(_replace, str(text))


def resolve_image_source(source: Any, context: DataContext) -> str:
    """Resolve an image element source, or return ``""`` when nothing should be drawn."""
    resolved = substitute(source, context).strip()
    if not resolved:
        return ""
    if "{{" in resolved or "}}" in resolved:
        return ""
    return resolved


