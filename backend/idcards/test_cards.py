import json
from datetime import date
from io import BytesIO
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status
from rest_framework.test import APIClient
from PIL import Image

from employees.models import CompanySettings, Department, Designation, Employee, Location

from .card_registry import TOKEN_REGISTRY
from .card_views import _settle


@override_settings(IDCARD_VERIFICATION_BASE_URL="https://verify.example.com")
class CardTemplateApiTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.client = APIClient()
        self.staff = User.objects.create_user(username="staff", password="pass12345", is_staff=True)
        self.viewer = User.objects.create_user(username="viewer", password="pass12345")
        self.company = CompanySettings.objects.create(company_name="SecureForce India")
        self.employee = Employee.objects.create(
            employee_id="SF-0007",
            name="Priya Sharma",
            phone="+91-9000000007",
            department=Department.objects.create(name="Security"),
            designation=Designation.objects.create(name="Security Guard"),
            location=Location.objects.create(name="Mumbai Office"),
            id_card_valid_from=date(2025, 1, 1),
            id_card_valid_until=date(2027, 12, 31),
        )
        self.other = Employee.objects.create(employee_id="SF-0008", name="Rahul Verma")

    def test_requires_authentication(self):
        response = self.client.get("/api/card-templates/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_lists_catalogue_with_default_flag(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/card-templates/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [item["id"] for item in response.data]
        self.assertIn("classic-professional", ids)
        defaults = [item["id"] for item in response.data if item["is_default"]]
        self.assertEqual(defaults, [ids[0]])

    def test_retrieve_unknown_template_returns_404(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/card-templates/no-such-template/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["detail"], "Card template not found.")

    def test_preview_for_employee(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/preview/",
            {"employee_id": "SF-0007"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("Priya Sharma", response.data["html"])
        self.assertIn("SecureForce India", response.data["html"])
        self.assertIn("https://verify.example.com/verify/SF-0007", response.data["html"])
        self.assertEqual(response.data["tree"]["template_id"], "classic-professional")
        self.assertEqual(response.data["tree"]["root"]["kind"], "card")

    def test_preview_without_employee_uses_sample_data(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/modern-accent/preview/",
            {},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("John Doe", response.data["html"])
        self.assertIn("SF-0001", response.data["html"])

    def test_preview_unknown_employee_returns_404(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/preview/",
            {"employee_id": "SF-9999"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["detail"], "Employee not found.")

    def test_preview_with_inline_template(self):
        self.client.force_authenticate(user=self.viewer)
        payload = {
            "employee_id": "SF-0007",
            "template": {
                "id": "draft",
                "width": 3.375,
                "height": 2.125,
                "elements": [
                    {"id": "name", "type": "text", "x": 0.2, "y": 0.2, "width": 2, "height": 0.3,
                     "text": "{{employee_name}} / {{designation_name}}"},
                ],
            },
        }
        response = self.client.post(
            "/api/card-templates/classic-professional/preview/",
            payload,
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["template_id"], "draft")
        self.assertIn("Priya Sharma / Security Guard", response.data["html"])

    def test_preview_rejects_invalid_inline_template(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/preview/",
            {"template": {"id": "bad", "width": -1, "height": 2}},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("template", response.data)

    def _inline_raster(self, template):
        return self.client.post(
            "/api/card-templates/classic-professional/raster/",
            {"employee_id": "SF-0007", "dpi": 96, "template": template},
            format="json",
        )

    def test_raster_rejects_non_finite_inline_size(self):
        self.client.force_authenticate(user=self.viewer)
        response = self._inline_raster({"id": "nan", "width": "nan", "height": 2.125})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("template", response.data)

    @override_settings(IDCARD_MAX_CARD_SIZE_IN=6)
    def test_raster_rejects_oversized_inline_card(self):
        self.client.force_authenticate(user=self.viewer)
        response = self._inline_raster({"id": "wide", "width": 10, "height": 2.125})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("template", response.data)

    @override_settings(IDCARD_MAX_RASTER_PIXELS=100_000)
    def test_raster_rejects_buffers_over_pixel_limit(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/raster/",
            {"employee_id": "SF-0007", "dpi": 300},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("pixel limit", response.data["detail"])

    def test_inline_template_cannot_fetch_remote_images(self):
        self.client.force_authenticate(user=self.viewer)
        with mock.patch("idcards.image_sources.urlopen") as urlopen:
            response = self._inline_raster(
                {
                    "id": "remote",
                    "width": 3.375,
                    "height": 2.125,
                    "elements": [
                        {"id": "img", "type": "image", "x": 0, "y": 0, "width": 1, "height": 1,
                         "source": "http://169.254.169.254/latest/meta-data"},
                    ],
                }
            )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("template", response.data)
        urlopen.assert_not_called()

    def test_inline_template_accepts_tokens_and_data_uris(self):
        self.client.force_authenticate(user=self.viewer)
        response = self._inline_raster(
            {
                "id": "local",
                "width": 3.375,
                "height": 2.125,
                "elements": [
                    {"id": "photo", "type": "image", "x": 0, "y": 0, "width": 1, "height": 1,
                     "source": "{{employee_photo}}"},
                    {"id": "dot", "type": "image", "x": 1, "y": 0, "width": 1, "height": 1,
                     "source": "data:image/gif;base64,R0lGODlhAQABAAAAACw="},
                ],
            }
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response["Content-Type"], "image/png")

    def test_raster_returns_png_at_requested_dpi(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/raster/",
            {"employee_id": "SF-0007", "dpi": 96},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response["Content-Type"], "image/png")
        image = Image.open(BytesIO(response.content))
        self.assertEqual(image.size, (324, 204))

    def test_raster_defaults_to_print_dpi(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/raster/",
            {"employee_id": "SF-0007"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        image = Image.open(BytesIO(response.content))
        self.assertEqual(image.size, (1012, 638))

    def test_raster_rejects_invalid_dpi(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/raster/",
            {"employee_id": "SF-0007", "dpi": 0},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("dpi", response.data)

    def test_print_document_reports_failures(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/print/",
            {"employee_ids": ["SF-0007", "SF-9999", "SF-0008"]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response["Content-Type"].startswith("text/html"))
        self.assertEqual(response["X-Card-Count"], "2")
        failures = json.loads(response["X-Card-Failures"])
        self.assertEqual(failures, [{"employee_id": "SF-9999", "detail": "Employee not found."}])
        html = response.content.decode()
        self.assertIn("@page { size: 3.875in 2.625in; margin: 0.25in; }", html)
        self.assertIn("Priya Sharma", html)
        self.assertIn("Rahul Verma", html)
        self.assertEqual(html.count('class="print-card"'), 2)

    def test_print_raster_mode_embeds_bitmaps(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/print/",
            {"employee_ids": ["SF-0007"], "mode": "raster", "dpi": 96},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("data:image/png;base64,", response.content.decode())

    def test_print_with_no_renderable_cards_fails(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/print/",
            {"employee_ids": ["SF-9998", "SF-9999"]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(len(response.data["failures"]), 2)

    def test_print_rejects_duplicate_ids(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/print/",
            {"employee_ids": ["SF-0007", "SF-0007"]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(IDCARD_MAX_BATCH_SIZE=1)
    def test_print_enforces_batch_limit(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post(
            "/api/card-templates/classic-professional/print/",
            {"employee_ids": ["SF-0007", "SF-0008"]},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("employee_ids", response.data)

    def test_set_default_is_staff_only(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.post("/api/card-templates/premium-gold/set-default/")
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(user=self.staff)
        response = self.client.post("/api/card-templates/premium-gold/set-default/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_default"])
        self.company.refresh_from_db()
        self.assertEqual(self.company.default_card_template, "premium-gold")

        listing = self.client.get("/api/card-templates/")
        defaults = [item["id"] for item in listing.data if item["is_default"]]
        self.assertEqual(defaults, ["premium-gold"])

    def test_token_registry(self):
        self.client.force_authenticate(user=self.viewer)
        response = self.client.get("/api/card-tokens/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [item["key"] for item in response.data],
            [token["key"] for token in TOKEN_REGISTRY],
        )


class _SlowCard:
    template_id = "slow"

    def __init__(self, timeouts):
        self.timeouts = timeouts

    def wait(self, timeout=None):
        self.timeouts.append(timeout)
        return False


class SettleTests(SimpleTestCase):
    @override_settings(IDCARD_IMAGE_TIMEOUT_SECONDS=10)
    def test_cards_share_one_deadline(self):
        timeouts = []
        with mock.patch("idcards.card_views.time") as clock:
            clock.monotonic.side_effect = [100.0, 104.0, 109.0, 115.0]
            _settle([_SlowCard(timeouts), _SlowCard(timeouts), _SlowCard(timeouts)])
        self.assertEqual(timeouts, [6.0, 1.0, 0.0])
