from django.conf import settings
from django.db.models.deletion import ProtectedError
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
from loguru import logger
from rest_framework import filters, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from idcards.verification import verification_url

from .models import CompanySettings, Department, Designation, Employee, Location
from .pagination import OptionalPageNumberPagination
from .serializers import (
    CompanySettingsSerializer,
    DepartmentSerializer,
    DesignationSerializer,
    EmployeeSerializer,
    LocationSerializer,
    VerificationResultSerializer,
    VerificationUrlSerializer,
)
from .services import VerificationStatus, verification_status


class IsStaffOrReadOnly(permissions.BasePermission):
    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return bool(request.method in permissions.SAFE_METHODS or user.is_staff)


class NamedEntityViewSet(viewsets.ModelViewSet):
    permission_classes = [IsStaffOrReadOnly]
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "created_at"]

    def destroy(self, request, *args, **kwargs):
        try:
            return super().destroy(request, *args, **kwargs)
        except ProtectedError:
            return Response(
                {"detail": "Record is still referenced and cannot be deleted."},
                status=status.HTTP_409_CONFLICT,
            )


class DepartmentViewSet(NamedEntityViewSet):
    serializer_class = DepartmentSerializer
    queryset = Department.objects.all()


class DesignationViewSet(NamedEntityViewSet):
    serializer_class = DesignationSerializer
    queryset = Designation.objects.all()


class LocationViewSet(NamedEntityViewSet):
    serializer_class = LocationSerializer
    queryset = Location.objects.all()


class EmployeeViewSet(viewsets.ModelViewSet):
    serializer_class = EmployeeSerializer
    permission_classes = [IsStaffOrReadOnly]
    queryset = Employee.objects.select_related("department", "designation", "location")
    pagination_class = OptionalPageNumberPagination
    lookup_field = "employee_id"
    lookup_value_regex = "[^/]+"
    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_fields = ["department", "designation", "location", "status"]
    search_fields = ["employee_id", "name", "phone", "email"]
    ordering_fields = ["employee_id", "name", "date_of_joining", "id_card_valid_until"]

    def perform_destroy(self, instance):
        logger.info(f"Deleting employee {instance.employee_id}")
        instance.delete()

    @extend_schema(request=None, responses=VerificationUrlSerializer)
    @action(detail=True, methods=["get"], url_path="verification-url")
    def verification_link(self, request, employee_id=None):
        employee = self.get_object()
        payload = {
            "employee_id": employee.employee_id,
            "url": verification_url(employee.employee_id, settings.IDCARD_VERIFICATION_BASE_URL),
        }
        return Response(payload, status=status.HTTP_200_OK)


class VerifyEmployeeView(APIView):
    """Public lookup behind the QR code printed on each card."""

    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    @extend_schema(responses=VerificationResultSerializer)
    def get(self, request, employee_id):
        employee = (
            Employee.objects.select_related("department", "designation", "location")
            .filter(employee_id=employee_id)
            .first()
        )
        if employee is None:
            return Response(
                {"employee_id": employee_id, "status": VerificationStatus.INVALID},
                status=status.HTTP_404_NOT_FOUND,
            )
        company = CompanySettings.load()
        payload = {
            "employee_id": employee.employee_id,
            "status": verification_status(employee),
            "name": employee.name,
            "photo_url": employee.photo_url,
            "designation_name": employee.designation.name if employee.designation else "",
            "department_name": employee.department.name if employee.department else "",
            "location_name": employee.location.name if employee.location else "",
            "id_card_valid_from": employee.id_card_valid_from,
            "id_card_valid_until": employee.id_card_valid_until,
            "company_name": company.company_name if company else "",
        }
        return Response(VerificationResultSerializer(payload).data, status=status.HTTP_200_OK)


class CompanySettingsView(APIView):
    permission_classes = [IsStaffOrReadOnly]

    @extend_schema(responses=CompanySettingsSerializer)
    def get(self, request):
        company = CompanySettings.load()
        if company is None:
            return Response({"detail": "Company settings are not configured."}, status=status.HTTP_404_NOT_FOUND)
        return Response(CompanySettingsSerializer(company).data, status=status.HTTP_200_OK)

    @extend_schema(request=CompanySettingsSerializer, responses=CompanySettingsSerializer)
    def put(self, request):
        company = CompanySettings.load()
        serializer = CompanySettingsSerializer(company, data=request.data, partial=company is not None)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data, status=status.HTTP_200_OK)
