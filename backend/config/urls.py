from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.http import JsonResponse
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework.routers import DefaultRouter

from employees.views import (
    CompanySettingsView,
    DepartmentViewSet,
    DesignationViewSet,
    EmployeeViewSet,
    LocationViewSet,
    VerifyEmployeeView,
)
from idcards.card_views import CardTemplateViewSet, CardTokenRegistryView

router = DefaultRouter()
router.register(r"employees", EmployeeViewSet, basename="employee")
router.register(r"departments", DepartmentViewSet, basename="department")
router.register(r"designations", DesignationViewSet, basename="designation")
router.register(r"locations", LocationViewSet, basename="location")
router.register(r"card-templates", CardTemplateViewSet, basename="card-template")


def health_check(request):
    return JsonResponse({"status": "ok"})


urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/health/", health_check, name="health-check"),
    path("api/company-settings/", CompanySettingsView.as_view(), name="company-settings"),
    path("api/card-tokens/", CardTokenRegistryView.as_view(), name="card-tokens"),
    path("api/verify/<str:employee_id>/", VerifyEmployeeView.as_view(), name="verify-employee"),
    path("api/", include(router.urls)),
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="docs"),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
