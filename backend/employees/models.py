from django.core.validators import RegexValidator
from django.db import models
from django.utils.translation import gettext_lazy as _

EMPLOYEE_ID_PREFIX = "SF"
EMPLOYEE_ID_PATTERN = r"^SF-\d{4,}$"


class NamedEntity(models.Model):
    name = models.CharField(max_length=150, unique=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
        ordering = ["name"]

    def __str__(self):
        return self.name


class Department(NamedEntity):
    pass


class Designation(NamedEntity):
    pass


class Location(NamedEntity):
    address = models.CharField(max_length=255, blank=True)


class Employee(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", _("Active")
        INACTIVE = "inactive", _("Inactive")
        TERMINATED = "terminated", _("Terminated")

    employee_id = models.CharField(
        max_length=16,
        unique=True,
        validators=[
            RegexValidator(EMPLOYEE_ID_PATTERN, message=_("Employee ID must look like SF-0001."))
        ],
    )
    name = models.CharField(max_length=150)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=32, blank=True)
    photo_url = models.CharField(max_length=500, blank=True)
    department = models.ForeignKey(
        Department,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="employees",
    )
    designation = models.ForeignKey(
        Designation,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="employees",
    )
    location = models.ForeignKey(
        Location,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="employees",
    )
    date_of_joining = models.DateField(null=True, blank=True)
    emergency_contact_name = models.CharField(max_length=150, blank=True)
    emergency_contact_phone = models.CharField(max_length=32, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.ACTIVE)
    id_card_valid_from = models.DateField(null=True, blank=True)
    id_card_valid_until = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["employee_id"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(id_card_valid_from__isnull=True)
                | models.Q(id_card_valid_until__isnull=True)
                | models.Q(id_card_valid_until__gte=models.F("id_card_valid_from")),
                name="employee_card_validity_ordered",
            ),
        ]

    def __str__(self):
        return f"{self.employee_id} {self.name}"


class CompanySettings(models.Model):
    company_name = models.CharField(max_length=200)
    office_address = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    website = models.URLField(blank=True)
    logo_url = models.CharField(max_length=500, blank=True)
    default_card_template = models.CharField(max_length=64, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "company settings"
        verbose_name_plural = "company settings"

    def __str__(self):
        return self.company_name

    @classmethod
    def load(cls) -> "CompanySettings | None":
        return cls.objects.order_by("id").first()
