from __future__ import annotations

from datetime import date
import re

from django.db import transaction
from django.utils import timezone

from idcards.substitution import CompanySettingsRecord, DataContext, EmployeeRecord

from .models import EMPLOYEE_ID_PREFIX, CompanySettings, Employee

EMPLOYEE_NUMBER_PATTERN = re.compile(rf"^{EMPLOYEE_ID_PREFIX}-(\d+)$")


class VerificationStatus:
    VALID = "valid"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    INVALID = "invalid"


def format_employee_id(number: int) -> str:
    return f"{EMPLOYEE_ID_PREFIX}-{number:04d}"


def generate_employee_id() -> str:
    """Next ``SF-XXXX`` identifier after the highest number in use."""
    highest = 0
    for employee_id in Employee.objects.values_list("employee_id", flat=True):
        match = EMPLOYEE_NUMBER_PATTERN.match(employee_id or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return format_employee_id(highest + 1)


@transaction.atomic
def create_employee(**fields) -> Employee:
    employee_id = fields.pop("employee_id", None) or generate_employee_id()
    return Employee.objects.create(employee_id=employee_id, **fields)


def _related_name(instance) -> str:
    return instance.name if instance is not None else ""


def build_data_context(
    employee: Employee,
    company_settings: CompanySettings | None = None,
) -> DataContext:
    settings_record = CompanySettingsRecord()
    if company_settings is not None:
        settings_record = CompanySettingsRecord(
            company_name=company_settings.company_name,
            logo_url=company_settings.logo_url or None,
        )
    return DataContext(
        employee=EmployeeRecord(
            employee_id=employee.employee_id,
            name=employee.name,
            phone=employee.phone,
            photo_url=employee.photo_url or None,
            status=employee.status,
            id_card_valid_from=employee.id_card_valid_from,
            id_card_valid_until=employee.id_card_valid_until,
            department_name=_related_name(employee.department),
            designation_name=_related_name(employee.designation),
            location_name=_related_name(employee.location),
        ),
        company=settings_record,
    )


def sample_data_context() -> DataContext:
    """Demo employee used to preview templates without real records."""
    return DataContext(
        employee=EmployeeRecord(
            employee_id="SF-0001",
            name="John Doe",
            phone="+91-9876543210",
            photo_url="https://api.dicebear.com/7.x/avataaars/png?seed=John",
            status=Employee.Status.ACTIVE,
            id_card_valid_from=date(2024, 1, 1),
            id_card_valid_until=date(2026, 12, 31),
            department_name="Security",
            designation_name="Security Guard",
            location_name="New Delhi Office",
        ),
        company=CompanySettingsRecord(
            company_name="SecureForce India",
            logo_url="https://api.dicebear.com/7.x/initials/png?seed=SF",
        ),
    )


def verification_status(employee: Employee | None, today: date | None = None) -> str:
    if employee is None:
        return VerificationStatus.INVALID
    today = today or timezone.localdate()
    valid_until = employee.id_card_valid_until
    if employee.status == Employee.Status.ACTIVE and valid_until and valid_until >= today:
        return VerificationStatus.VALID
    if valid_until and valid_until < today:
        return VerificationStatus.EXPIRED
    if employee.status != Employee.Status.ACTIVE:
        return VerificationStatus.INACTIVE
    return VerificationStatus.INVALID
