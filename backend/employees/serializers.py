from django.core.exceptions import ValidationError as DjangoValidationError
from rest_framework import serializers

from idcards.card_templates import get_template

from .models import CompanySettings, Department, Designation, Employee, Location


class DepartmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Department
        fields = ["id", "name", "description", "created_at", "updated_at"]
        read_only_fields = ["created_at", "updated_at"]


class DesignationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Designation
        fields = ["id", "name", "description", "created_at", "updated_at"]
        read_only_fields = ["created_at", "updated_at"]


class LocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = Location
        fields = ["id", "name", "address", "description", "created_at", "updated_at"]
        read_only_fields = ["created_at", "updated_at"]


class EmployeeSerializer(serializers.ModelSerializer):
    employee_id = serializers.CharField(required=False, max_length=16)
    department_name = serializers.CharField(source="department.name", read_only=True, default="")
    designation_name = serializers.CharField(source="designation.name", read_only=True, default="")
    location_name = serializers.CharField(source="location.name", read_only=True, default="")

    class Meta:
        model = Employee
        fields = [
            "id",
            "employee_id",
            "name",
            "email",
            "phone",
            "photo_url",
            "department",
            "department_name",
            "designation",
            "designation_name",
            "location",
            "location_name",
            "date_of_joining",
            "emergency_contact_name",
            "emergency_contact_phone",
            "status",
            "id_card_valid_from",
            "id_card_valid_until",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate_employee_id(self, value):
        # Model validators do not run for fields declared on the serializer.
        for validator in Employee._meta.get_field("employee_id").validators:
            try:
                validator(value)
            except DjangoValidationError as exc:
                raise serializers.ValidationError(exc.messages) from exc
        queryset = Employee.objects.filter(employee_id=value)
        if self.instance is not None:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError("An employee with this ID already exists.")
        return value

    def validate(self, attrs):
        valid_from = attrs.get("id_card_valid_from")
        valid_until = attrs.get("id_card_valid_until")
        if self.instance is not None:
            valid_from = attrs.get("id_card_valid_from", self.instance.id_card_valid_from)
            valid_until = attrs.get("id_card_valid_until", self.instance.id_card_valid_until)
        if valid_from and valid_until and valid_until < valid_from:
            raise serializers.ValidationError(
                {"id_card_valid_until": "Card validity end must not precede its start."}
            )
        return attrs

    def create(self, validated_data):
        from .services import create_employee

        return create_employee(**validated_data)


class VerificationUrlSerializer(serializers.Serializer):
    employee_id = serializers.CharField()
    url = serializers.CharField()


class VerificationResultSerializer(serializers.Serializer):
    employee_id = serializers.CharField()
    status = serializers.CharField()
    name = serializers.CharField(allow_blank=True, required=False)
    photo_url = serializers.CharField(allow_blank=True, required=False)
    designation_name = serializers.CharField(allow_blank=True, required=False)
    department_name = serializers.CharField(allow_blank=True, required=False)
    location_name = serializers.CharField(allow_blank=True, required=False)
    id_card_valid_from = serializers.DateField(allow_null=True, required=False)
    id_card_valid_until = serializers.DateField(allow_null=True, required=False)
    company_name = serializers.CharField(allow_blank=True, required=False)


class CompanySettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = CompanySettings
        fields = [
            "id",
            "company_name",
            "office_address",
            "phone",
            "email",
            "website",
            "logo_url",
            "default_card_template",
            "updated_at",
        ]
        read_only_fields = ["updated_at"]

    def validate_default_card_template(self, value):
        if value and get_template(value) is None:
            raise serializers.ValidationError("Unknown card template.")
        return value
