from __future__ import annotations

import json
import time

from django.conf import settings
from django.db import transaction
from django.http import HttpResponse
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiResponse, extend_schema
from loguru import logger
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from rest_framework.views import APIView

from employees.models import CompanySettings, Employee
from employees.services import build_data_context, sample_data_context

from .card_registry import token_registry_payload
from .card_rendering import (
    CardRenderError,
    InteractiveTarget,
    RasterCard,
    RasterTarget,
    render_interactive,
    shared_image_executor,
)
from .card_serializers import (
    CardPreviewRequestSerializer,
    CardPreviewSerializer,
    CardPrintRequestSerializer,
    CardRasterRequestSerializer,
    CardTemplateSerializer,
    CardTokenSerializer,
)
from .card_templates import (
    CardTemplate,
    default_template_id,
    get_template,
    list_templates,
    template_to_payload,
)
from .image_sources import ImageLoader
from .print_composer import BatchFailure, compose_print_document, render_batch
from .substitution import DataContext


def _is_staff(user) -> bool:
    return bool(user and user.is_authenticated and user.is_staff)


def _current_default_template_id() -> str:
    company = CompanySettings.load()
    if company and company.default_card_template and get_template(company.default_card_template):
        return company.default_card_template
    return default_template_id()


def _template_payload(template: CardTemplate, default_id: str) -> dict:
    payload = template_to_payload(template)
    payload["is_default"] = template.id == default_id
    return payload


def _lookup_template(template_id: str) -> CardTemplate:
    template = get_template(template_id)
    if template is None:
        raise CardRenderError("Card template not found.", status_code=status.HTTP_404_NOT_FOUND)
    return template


def _employee_context(employee_id: str, company: CompanySettings | None) -> DataContext:
    employee = (
        Employee.objects.select_related("department", "designation", "location")
        .filter(employee_id=employee_id)
        .first()
    )
    if employee is None:
        raise CardRenderError("Employee not found.", status_code=status.HTTP_404_NOT_FOUND)
    return build_data_context(employee, company)


def _render_context(validated_data) -> DataContext:
    employee_id = validated_data.get("employee_id")
    if employee_id:
        return _employee_context(employee_id, CompanySettings.load())
    return sample_data_context()


def _raster_target(dpi: float | None) -> RasterTarget:
    return RasterTarget(
        dpi=dpi or settings.IDCARD_PRINT_DPI,
        verification_base_url=settings.IDCARD_VERIFICATION_BASE_URL,
        image_loader=ImageLoader(
            timeout_seconds=settings.IDCARD_IMAGE_TIMEOUT_SECONDS,
            media_url=settings.MEDIA_URL,
        ),
        executor=shared_image_executor(settings.IDCARD_IMAGE_LOAD_WORKERS),
        max_pixels=settings.IDCARD_MAX_RASTER_PIXELS,
    )


def _settle(cards: list[RasterCard]) -> None:
    """Wait for image loads with one deadline shared by every card in the request."""
    deadline = time.monotonic() + settings.IDCARD_IMAGE_TIMEOUT_SECONDS
    for card in cards:
        remaining = max(0.0, deadline - time.monotonic())
        if not card.wait(timeout=remaining):
            logger.warning(f"Image loads for card '{card.template_id}' did not finish in time")


class CardTemplateViewSet(viewsets.ViewSet):
    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = "[^/]+"

    @extend_schema(responses=CardTemplateSerializer(many=True))
    def list(self, request):
        default_id = _current_default_template_id()
        payload = [_template_payload(template, default_id) for template in list_templates()]
        return Response(payload, status=status.HTTP_200_OK)

    @extend_schema(responses=CardTemplateSerializer)
    def retrieve(self, request, pk=None):
        try:
            template = _lookup_template(pk)
        except CardRenderError as exc:
            return Response({"detail": exc.detail}, status=exc.status_code)
        return Response(
            _template_payload(template, _current_default_template_id()),
            status=status.HTTP_200_OK,
        )

    @extend_schema(request=CardPreviewRequestSerializer, responses=CardPreviewSerializer)
    @action(detail=True, methods=["post"], url_path="preview")
    def preview(self, request, pk=None):
        serializer = CardPreviewRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            template = serializer.validated_data.get("template") or _lookup_template(pk)
            card = render_interactive(
                template,
                _render_context(serializer.validated_data),
                verification_base_url=settings.IDCARD_VERIFICATION_BASE_URL,
            )
        except CardRenderError as exc:
            return Response({"detail": exc.detail}, status=exc.status_code)
        return Response(
            {"template_id": template.id, "html": card.to_html(), "tree": card.to_dict()},
            status=status.HTTP_200_OK,
        )

    @extend_schema(
        request=CardRasterRequestSerializer,
        responses={
            200: OpenApiResponse(
                response=OpenApiTypes.BINARY,
                description="Card bitmap (PNG).",
            )
        },
    )
    @action(detail=True, methods=["post"], url_path="raster")
    def raster(self, request, pk=None):
        serializer = CardRasterRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            template = serializer.validated_data.get("template") or _lookup_template(pk)
            context = _render_context(serializer.validated_data)
            card = _raster_target(serializer.validated_data.get("dpi")).render(template, context)
        except CardRenderError as exc:
            return Response({"detail": exc.detail}, status=exc.status_code)
        _settle([card])
        response = HttpResponse(card.to_png(), content_type="image/png")
        response["Content-Disposition"] = (
            f'inline; filename="{template.id}-{context.employee.employee_id or "card"}.png"'
        )
        return response

    @extend_schema(
        request=CardPrintRequestSerializer,
        responses={
            200: OpenApiResponse(
                response=OpenApiTypes.STR,
                description="Print-ready HTML document, one card per page.",
            )
        },
    )
    @action(detail=True, methods=["post"], url_path="print")
    def print_cards(self, request, pk=None):
        serializer = CardPrintRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        try:
            template = _lookup_template(pk)
        except CardRenderError as exc:
            return Response({"detail": exc.detail}, status=exc.status_code)

        company = CompanySettings.load()
        employees = {
            employee.employee_id: employee
            for employee in Employee.objects.select_related(
                "department", "designation", "location"
            ).filter(employee_id__in=data["employee_ids"])
        }
        contexts = []
        failures: list[BatchFailure] = []
        for index, employee_id in enumerate(data["employee_ids"]):
            employee = employees.get(employee_id)
            if employee is None:
                failures.append(BatchFailure(index=index, employee_id=employee_id, detail="Employee not found."))
                continue
            contexts.append(build_data_context(employee, company))

        if data["mode"] == CardPrintRequestSerializer.Mode.RASTER:
            dpi = data.get("dpi")

            def target_factory():
                return _raster_target(dpi)

        else:

            def target_factory():
                return InteractiveTarget(verification_base_url=settings.IDCARD_VERIFICATION_BASE_URL)

        result = render_batch(template, contexts, target_factory=target_factory)
        failures.extend(result.failures)
        failure_payload = [
            {"employee_id": failure.employee_id, "detail": failure.detail} for failure in failures
        ]
        if not result.cards:
            return Response(
                {"detail": "No cards could be rendered.", "failures": failure_payload},
                status=status.HTTP_400_BAD_REQUEST,
            )
        _settle([card for card in result.cards if isinstance(card, RasterCard)])
        try:
            document = compose_print_document(
                result.cards,
                margin_in=settings.IDCARD_PRINT_MARGIN_IN,
                title=data["title"],
            )
        except CardRenderError as exc:
            return Response({"detail": exc.detail}, status=exc.status_code)
        response = HttpResponse(document, content_type="text/html; charset=utf-8")
        response["X-Card-Count"] = str(len(result.cards))
        response["X-Card-Failures"] = json.dumps(failure_payload)
        return response

    @extend_schema(request=None, responses=CardTemplateSerializer)
    @action(detail=True, methods=["post"], url_path="set-default")
    def set_default(self, request, pk=None):
        if not _is_staff(request.user):
            raise PermissionDenied("Only staff can set the default template.")
        try:
            template = _lookup_template(pk)
        except CardRenderError as exc:
            return Response({"detail": exc.detail}, status=exc.status_code)
        with transaction.atomic():
            company = CompanySettings.load()
            if company is None:
                company = CompanySettings(company_name="")
            company.default_card_template = template.id
            company.save()
        logger.info(f"Default card template set to '{template.id}' by {request.user}")
        return Response(_template_payload(template, template.id), status=status.HTTP_200_OK)


class CardTokenRegistryView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(responses=CardTokenSerializer(many=True))
    def get(self, request):
        return Response(token_registry_payload(), status=status.HTTP_200_OK)
