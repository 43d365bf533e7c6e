import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


def _named_entity_fields():
    return [
        ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
        ("name", models.CharField(max_length=150, unique=True)),
        ("description", models.TextField(blank=True)),
        ("created_at", models.DateTimeField(auto_now_add=True)),
        ("updated_at", models.DateTimeField(auto_now=True)),
    ]


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Department",
            fields=_named_entity_fields(),
            options={"ordering": ["name"], "abstract": False},
        ),
        migrations.CreateModel(
            name="Designation",
            fields=_named_entity_fields(),
            options={"ordering": ["name"], "abstract": False},
        ),
        migrations.CreateModel(
            name="Location",
            fields=_named_entity_fields()
            + [("address", models.CharField(blank=True, max_length=255))],
            options={"ordering": ["name"], "abstract": False},
        ),
        migrations.CreateModel(
            name="CompanySettings",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("company_name", models.CharField(max_length=200)),
                ("office_address", models.CharField(blank=True, max_length=255)),
                ("phone", models.CharField(blank=True, max_length=32)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("website", models.URLField(blank=True)),
                ("logo_url", models.CharField(blank=True, max_length=500)),
                ("default_card_template", models.CharField(blank=True, max_length=64)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "verbose_name": "company settings",
                "verbose_name_plural": "company settings",
            },
        ),
        migrations.CreateModel(
            name="Employee",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "employee_id",
                    models.CharField(
                        max_length=16,
                        unique=True,
                        validators=[
                            django.core.validators.RegexValidator(
                                "^SF-\\d{4,}$",
                                message="Employee ID must look like SF-0001.",
                            )
                        ],
                    ),
                ),
                ("name", models.CharField(max_length=150)),
                ("email", models.EmailField(blank=True, max_length=254)),
                ("phone", models.CharField(blank=True, max_length=32)),
                ("photo_url", models.CharField(blank=True, max_length=500)),
                ("date_of_joining", models.DateField(blank=True, null=True)),
                ("emergency_contact_name", models.CharField(blank=True, max_length=150)),
                ("emergency_contact_phone", models.CharField(blank=True, max_length=32)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("inactive", "Inactive"),
                            ("terminated", "Terminated"),
                        ],
                        default="active",
                        max_length=16,
                    ),
                ),
                ("id_card_valid_from", models.DateField(blank=True, null=True)),
                ("id_card_valid_until", models.DateField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "department",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="employees",
                        to="employees.department",
                    ),
                ),
                (
                    "designation",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="employees",
                        to="employees.designation",
                    ),
                ),
                (
                    "location",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="employees",
                        to="employees.location",
                    ),
                ),
            ],
            options={
                "ordering": ["employee_id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            ("id_card_valid_from__isnull", True),
                            ("id_card_valid_until__isnull", True),
                            ("id_card_valid_until__gte", models.F("id_card_valid_from")),
                            _connector="OR",
                        ),
                        name="employee_card_validity_ordered",
                    )
                ],
            },
        ),
    ]
