"""
Django settings for the ID card renderer.
"""

from pathlib import Path

from decouple import config

from .log_setup import configure_loguru

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config("DJANGO_SECRET_KEY", default="change-me")
DEBUG = config("DJANGO_DEBUG", cast=bool, default=False)
FRONTEND_BASE_URL = config("FRONTEND_BASE_URL", default="http://localhost:3000")


def split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


ALLOWED_HOSTS = split_csv(
    config("DJANGO_ALLOWED_HOSTS", default="localhost,127.0.0.1,[::1],testserver")
)
if DEBUG and config("DJANGO_ALLOW_ALL_HOSTS_IN_DEBUG", cast=bool, default=True):
    ALLOWED_HOSTS = ["*"]

# Security hardening toggles (set via environment for production).
SECURE_SSL_REDIRECT = config("DJANGO_SECURE_SSL_REDIRECT", cast=bool, default=False)
SESSION_COOKIE_SECURE = config("DJANGO_SESSION_COOKIE_SECURE", cast=bool, default=not DEBUG)
CSRF_COOKIE_SECURE = config("DJANGO_CSRF_COOKIE_SECURE", cast=bool, default=not DEBUG)
SECURE_HSTS_SECONDS = config("DJANGO_SECURE_HSTS_SECONDS", cast=int, default=0)
SECURE_CONTENT_TYPE_NOSNIFF = config(
    "DJANGO_SECURE_CONTENT_TYPE_NOSNIFF",
    cast=bool,
    default=True,
)
X_FRAME_OPTIONS = config("DJANGO_X_FRAME_OPTIONS", default="DENY")
if config("DJANGO_SECURE_USE_X_FORWARDED_PROTO", cast=bool, default=False):
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")


INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework.authtoken",
    "drf_spectacular",
    "corsheaders",
    "django_filters",
    "employees.apps.EmployeesConfig",
    "idcards.apps.IdcardsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

WSGI_APPLICATION = "config.wsgi.application"

DB_ENGINE = config("DB_ENGINE", default="sqlite")
if DB_ENGINE == "postgres":
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": config("POSTGRES_DB", default="idcards"),
            "USER": config("POSTGRES_USER", default="idcards"),
            "PASSWORD": config("POSTGRES_PASSWORD", default="idcards"),
            "HOST": config("POSTGRES_HOST", default="db"),
            "PORT": config("POSTGRES_PORT", default=5432, cast=int),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": config("SQLITE_PATH", default=str(BASE_DIR / "db.sqlite3")),
        }
    }


AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

LANGUAGE_CODE = "en-in"
TIME_ZONE = config("TIME_ZONE", default="Asia/Kolkata")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"
MEDIA_URL = config("MEDIA_URL", default="/media/")
MEDIA_ROOT = Path(config("MEDIA_ROOT", default=str(BASE_DIR / "media")))
DATA_UPLOAD_MAX_MEMORY_SIZE = config(
    "DATA_UPLOAD_MAX_MEMORY_SIZE", cast=int, default=10 * 1024 * 1024
)
STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.FileSystemStorage",
    },
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedStaticFilesStorage",
    },
}
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.TokenAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}
API_PAGE_SIZE = config("API_PAGE_SIZE", cast=int, default=50)
API_MAX_PAGE_SIZE = config("API_MAX_PAGE_SIZE", cast=int, default=500)


SPECTACULAR_SETTINGS = {
    "TITLE": "ID Card Renderer API",
    "DESCRIPTION": "Employee records, ID card templates, previews and print documents",
    "VERSION": "0.1.0",
}

CORS_ALLOWED_ORIGINS = split_csv(
    config(
        "CORS_ALLOWED_ORIGINS",
        default="http://localhost:3000,http://127.0.0.1:3000",
    )
)
CSRF_TRUSTED_ORIGINS = split_csv(
    config(
        "CSRF_TRUSTED_ORIGINS",
        default="http://localhost:3000,http://127.0.0.1:3000",
    )
)
# Print responses report rendered and failed cards in these headers.
CORS_EXPOSE_HEADERS = ["X-Card-Count", "X-Card-Failures"]

IDCARD_VERIFICATION_BASE_URL = config("IDCARD_VERIFICATION_BASE_URL", default=FRONTEND_BASE_URL)
IDCARD_PRINT_DPI = config("IDCARD_PRINT_DPI", cast=float, default=300)
IDCARD_PRINT_MARGIN_IN = config("IDCARD_PRINT_MARGIN_IN", cast=float, default=0.25)
IDCARD_IMAGE_TIMEOUT_SECONDS = config("IDCARD_IMAGE_TIMEOUT_SECONDS", cast=float, default=10)
IDCARD_IMAGE_LOAD_WORKERS = config("IDCARD_IMAGE_LOAD_WORKERS", cast=int, default=4)
IDCARD_MAX_BATCH_SIZE = config("IDCARD_MAX_BATCH_SIZE", cast=int, default=200)
IDCARD_MAX_CARD_SIZE_IN = config("IDCARD_MAX_CARD_SIZE_IN", cast=float, default=6)
IDCARD_MAX_RASTER_PIXELS = config("IDCARD_MAX_RASTER_PIXELS", cast=int, default=25_000_000)

LOG_LEVEL = config("LOG_LEVEL", default="INFO").upper()
configure_loguru(LOG_LEVEL)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "loguru": {"class": "config.log_setup.InterceptHandler"},
    },
    "root": {"handlers": ["loguru"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["loguru"], "level": LOG_LEVEL, "propagate": False},
    },
}
