from datetime import date, timedelta

from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from .models import CompanySettings, Department, Designation, Employee, Location
from .services import (
    VerificationStatus,
    build_data_context,
    create_employee,
    generate_employee_id,
    sample_data_context,
    verification_status,
)


class EmployeeServiceTests(TestCase):
    def test_generate_employee_id_starts_at_one(self):
        self.assertEqual(generate_employee_id(), "SF-0001")

    def test_generate_employee_id_follows_highest_number(self):
        Employee.objects.create(employee_id="SF-0002", name="A")
        Employee.objects.create(employee_id="SF-0010", name="B")
        self.assertEqual(generate_employee_id(), "SF-0011")

    def test_create_employee_assigns_id(self):
        employee = create_employee(name="Asha Rao")
        self.assertEqual(employee.employee_id, "SF-0001")
        self.assertEqual(create_employee(name="Vikram Singh").employee_id, "SF-0002")

    def test_card_validity_must_be_ordered(self):
        with self.assertRaises(IntegrityError):
            Employee.objects.create(
                employee_id="SF-0001",
                name="Backwards",
                id_card_valid_from=date(2025, 1, 1),
                id_card_valid_until=date(2024, 1, 1),
            )

    def test_build_data_context_flattens_related_names(self):
        employee = Employee.objects.create(
            employee_id="SF-0003",
            name="Meera Iyer",
            phone="+91-9000000003",
            department=Department.objects.create(name="Operations"),
            designation=Designation.objects.create(name="Supervisor"),
            location=Location.objects.create(name="Pune Office"),
        )
        company = CompanySettings.objects.create(company_name="SecureForce India", logo_url="")
        context = build_data_context(employee, company)
        self.assertEqual(context.employee.department_name, "Operations")
        self.assertEqual(context.employee.designation_name, "Supervisor")
        self.assertEqual(context.employee.location_name, "Pune Office")
        self.assertIsNone(context.employee.photo_url)
        self.assertEqual(context.company.company_name, "SecureForce India")
        self.assertIsNone(context.company.logo_url)

    def test_build_data_context_without_relations_or_company(self):
        employee = Employee.objects.create(employee_id="SF-0004", name="Solo")
        context = build_data_context(employee)
        self.assertEqual(context.employee.department_name, "")
        self.assertEqual(context.company.company_name, "")

    def test_sample_data_context(self):
        context = sample_data_context()
        self.assertEqual(context.employee.name, "John Doe")
        self.assertEqual(context.employee.employee_id, "SF-0001")
        self.assertEqual(context.company.company_name, "SecureForce India")


class VerificationStatusTests(TestCase):
    def setUp(self):
        self.today = date(2025, 6, 1)

    def _employee(self, **fields):
        defaults = {"employee_id": "SF-0001", "name": "Check"}
        defaults.update(fields)
        return Employee(**defaults)

    def test_active_and_in_date_is_valid(self):
        employee = self._employee(id_card_valid_until=date(2025, 6, 1))
        self.assertEqual(verification_status(employee, self.today), VerificationStatus.VALID)

    def test_past_validity_is_expired(self):
        employee = self._employee(id_card_valid_until=date(2025, 5, 31))
        self.assertEqual(verification_status(employee, self.today), VerificationStatus.EXPIRED)

    def test_inactive_employee(self):
        employee = self._employee(
            status=Employee.Status.TERMINATED,
            id_card_valid_until=date(2026, 1, 1),
        )
        self.assertEqual(verification_status(employee, self.today), VerificationStatus.INACTIVE)

    def test_active_without_validity_is_invalid(self):
        self.assertEqual(
            verification_status(self._employee(), self.today),
            VerificationStatus.INVALID,
        )

    def test_unknown_employee_is_invalid(self):
        self.assertEqual(verification_status(None, self.today), VerificationStatus.INVALID)


@override_settings(IDCARD_VERIFICATION_BASE_URL="https://verify.example.com/")
class EmployeeApiTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.client = APIClient()
        self.staff = User.objects.create_user(username="staff", password="pass12345", is_staff=True)
        self.viewer = User.objects.create_user(username="viewer", password="pass12345")
        self.security = Department.objects.create(name="Security")
        self.admin_dept = Department.objects.create(name="Administration")
        self.guard = Designation.objects.create(name="Security Guard")
        self.delhi = Location.objects.create(name="New Delhi Office")
        self.first = Employee.objects.create(
            employee_id="SF-0001",
            name="John Doe",
            department=self.security,
            designation=self.guard,
            location=self.delhi,
        )
        self.second = Employee.objects.create(
            employee_id="SF-0002",
            name="Anita Desai",
            department=self.admin_dept,
            status=Employee.Status.INACTIVE,
        )

    def test_list_requires_authentication(self):
        response = self.client.get("/api/employees/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_list_includes_related_names(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/employees/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([item["employee_id"] for item in response.data], ["SF-0001", "SF-0002"])
        self.assertEqual(response.data[0]["designation_name"], "Security Guard")
        self.assertEqual(response.data[1]["location_name"], "")

    def test_list_paginates_on_request(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/employees/", {"page": 1, "page_size": 1})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 2)
        self.assertEqual(len(response.data["results"]), 1)

    def test_filter_and_search(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/employees/", {"department": self.security.id})
        self.assertEqual([item["employee_id"] for item in response.data], ["SF-0001"])

        response = self.client.get("/api/employees/", {"status": "inactive"})
        self.assertEqual([item["employee_id"] for item in response.data], ["SF-0002"])

        response = self.client.get("/api/employees/", {"search": "anita"})
        self.assertEqual([item["employee_id"] for item in response.data], ["SF-0002"])

    def test_viewer_cannot_create(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post("/api/employees/", {"name": "Nope"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_staff_create_generates_employee_id(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.post(
            "/api/employees/",
            {"name": "Ravi Kumar", "department": self.security.id},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["employee_id"], "SF-0003")
        self.assertEqual(response.data["department_name"], "Security")

    def test_create_rejects_malformed_or_taken_ids(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.post(
            "/api/employees/",
            {"name": "Bad", "employee_id": "EMP-1"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("employee_id", response.data)

        response = self.client.post(
            "/api/employees/",
            {"name": "Taken", "employee_id": "SF-0001"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_update_rejects_backwards_validity(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.patch(
            "/api/employees/SF-0001/",
            {"id_card_valid_from": "2025-06-01", "id_card_valid_until": "2025-01-01"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("id_card_valid_until", response.data)

    def test_verification_url(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/employees/SF-0001/verification-url/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["url"], "https://verify.example.com/verify/SF-0001")

    def test_staff_can_delete(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.delete("/api/employees/SF-0002/")
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Employee.objects.filter(employee_id="SF-0002").exists())


class VerifyEndpointTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        CompanySettings.objects.create(company_name="SecureForce India")
        today = timezone.localdate()
        Employee.objects.create(
            employee_id="SF-0001",
            name="John Doe",
            designation=Designation.objects.create(name="Security Guard"),
            id_card_valid_from=today - timedelta(days=30),
            id_card_valid_until=today + timedelta(days=30),
        )
        Employee.objects.create(
            employee_id="SF-0002",
            name="Old Card",
            id_card_valid_from=today - timedelta(days=400),
            id_card_valid_until=today - timedelta(days=1),
        )
        Employee.objects.create(
            employee_id="SF-0003",
            name="Left",
            status=Employee.Status.INACTIVE,
        )

    def test_valid_card_is_public(self):
        response = self.client.get("/api/verify/SF-0001/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], VerificationStatus.VALID)
        self.assertEqual(response.data["name"], "John Doe")
        self.assertEqual(response.data["designation_name"], "Security Guard")
        self.assertEqual(response.data["company_name"], "SecureForce India")

    def test_expired_and_inactive(self):
        self.assertEqual(
            self.client.get("/api/verify/SF-0002/").data["status"],
            VerificationStatus.EXPIRED,
        )
        self.assertEqual(
            self.client.get("/api/verify/SF-0003/").data["status"],
            VerificationStatus.INACTIVE,
        )

    def test_unknown_id_is_invalid(self):
        response = self.client.get("/api/verify/SF-9999/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["status"], VerificationStatus.INVALID)


class CompanySettingsApiTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.client = APIClient()
        self.staff = User.objects.create_user(username="staff", password="pass12345", is_staff=True)

    def test_missing_settings_return_404(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.get("/api/company-settings/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_put_creates_then_updates(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.put(
            "/api/company-settings/",
            {"company_name": "SecureForce India"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        response = self.client.put(
            "/api/company-settings/",
            {"default_card_template": "healthcare-staff"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(CompanySettings.objects.count(), 1)
        self.assertEqual(CompanySettings.load().default_card_template, "healthcare-staff")

    def test_rejects_unknown_template(self):
        self.client.force_authenticate(user=self.staff)
        response = self.client.put(
            "/api/company-settings/",
            {"company_name": "X", "default_card_template": "nope"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
