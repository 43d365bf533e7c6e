from django.contrib import admin

from .models import CompanySettings, Department, Designation, Employee, Location


@admin.register(Employee)
class EmployeeAdmin(admin.ModelAdmin):
    list_display = (
        "employee_id",
        "name",
        "designation",
        "location",
        "status",
        "id_card_valid_until",
        "has_photo",
    )
    list_filter = ("status", "department", "designation", "location")
    search_fields = ("employee_id", "name", "phone", "email")
    readonly_fields = ("created_at", "updated_at")

    @admin.display(boolean=True, description="Photo")
    def has_photo(self, obj: Employee) -> bool:
        return bool(obj.photo_url)


@admin.register(Department, Designation, Location)
class NamedEntityAdmin(admin.ModelAdmin):
    list_display = ("name", "created_at")
    search_fields = ("name",)


@admin.register(CompanySettings)
class CompanySettingsAdmin(admin.ModelAdmin):
    list_display = ("company_name", "default_card_template", "updated_at")
