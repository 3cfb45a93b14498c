"""
PATH: backend/settings/base.py

BASE SETTINGS (shared by dev + prod)

Operational maturity:
- Throttling (checkout writes, status polling, IPN receiver)
- Pesapal gateway config (sandbox | live)
- Payment status polling budget
- Delivery pricing table
- Structured console logging
- Sentry (optional): error visibility in production
"""

from __future__ import annotations

import sys
from datetime import timedelta
from pathlib import Path

import environ
from corsheaders.defaults import default_headers, default_methods

# -----------------------------------------
# BASE DIRECTORY
# -----------------------------------------
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# -----------------------------------------
# TEST MODE DETECTION
# -----------------------------------------
TESTING = "test" in sys.argv or "pytest" in (sys.argv[0] if sys.argv else "")

_DEFAULT_WRITE_RATE = "10000/min" if TESTING else "10/min"
_DEFAULT_POLL_RATE = "10000/min" if TESTING else "120/min"

# -----------------------------------------
# ENV (django-environ)
# -----------------------------------------
env = environ.Env(
    DEBUG=(bool, True),
    SECRET_KEY=(str, ""),
    TIME_ZONE=(str, "Africa/Nairobi"),
    ALLOWED_HOSTS=(list, ["localhost", "127.0.0.1", "testserver"]),
    CORS_ALLOWED_ORIGINS=(list, ["http://localhost:3000"]),
    CSRF_TRUSTED_ORIGINS=(list, ["http://localhost:3000"]),
    DATABASE_URL=(str, f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
    LOG_LEVEL=(str, "INFO"),
    ADMIN_PATH=(str, "admin/"),
    # Public base URL of the storefront (used to build callback / IPN URLs)
    APP_BASE_URL=(str, "http://localhost:3000"),
    # Pesapal
    PESAPAL_CONSUMER_KEY=(str, ""),
    PESAPAL_CONSUMER_SECRET=(str, ""),
    PESAPAL_ENVIRONMENT=(str, "sandbox"),
    PESAPAL_CALLBACK_URL=(str, ""),
    PESAPAL_IPN_URL=(str, ""),
    PESAPAL_TIMEOUT_SECONDS=(int, 25),
    PESAPAL_TOKEN_TTL_SECONDS=(int, 240),
    # Client status polling
    PAYMENT_POLL_INTERVAL_SECONDS=(float, 3.0),
    PAYMENT_POLL_MAX_ATTEMPTS=(int, 10),
    PAYMENT_POLL_HTTP_MAX_ATTEMPTS=(int, 5),
    # Delivery
    FREE_SHIPPING_THRESHOLD=(str, "5000"),
    # Throttling
    THROTTLE_ANON_RATE=(str, "60/min"),
    THROTTLE_USER_RATE=(str, "600/min"),
    THROTTLE_CHECKOUT_WRITE_RATE=(str, _DEFAULT_WRITE_RATE),
    THROTTLE_STATUS_POLL_RATE=(str, _DEFAULT_POLL_RATE),
    THROTTLE_WEBHOOK_RATE=(str, "600/min"),
    # Sentry (optional; enable by setting SENTRY_DSN)
    SENTRY_DSN=(str, ""),
    SENTRY_ENVIRONMENT=(str, "development"),
    SENTRY_TRACES_SAMPLE_RATE=(float, 0.0),
    SENTRY_SEND_PII=(bool, False),
)

# -----------------------------------------
# LOAD .env
# -----------------------------------------
env_file_1 = BASE_DIR / ".env"
env_file_2 = BASE_DIR.parent / ".env"

if env_file_1.exists():
    env.read_env(str(env_file_1))
elif env_file_2.exists():
    env.read_env(str(env_file_2))

# -----------------------------------------
# CORE SECURITY
# -----------------------------------------
SECRET_KEY = (env("SECRET_KEY") or "dev-insecure-change-me").strip()
DEBUG = env.bool("DEBUG")
ALLOWED_HOSTS = env.list("ALLOWED_HOSTS")

# Django admin mount point (keep trailing slash)
ADMIN_PATH = (env("ADMIN_PATH") or "admin/").strip()

# -----------------------------------------
# I18N / TZ
# -----------------------------------------
LANGUAGE_CODE = "en-us"
TIME_ZONE = (env("TIME_ZONE") or "UTC").strip()
USE_I18N = True
USE_TZ = True

# -----------------------------------------
# AUTH USER MODEL (custom)
# -----------------------------------------
AUTH_USER_MODEL = "users.User"

# -----------------------------------------
# INSTALLED APPS
# -----------------------------------------
INSTALLED_APPS = [
    "corsheaders",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "drf_spectacular",
    "django_filters",
    "users.apps.UsersConfig",
    "orders.apps.OrdersConfig",
    "payments.apps.PaymentsConfig",
]

# -----------------------------------------
# MIDDLEWARE
# -----------------------------------------
MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "backend.urls"
WSGI_APPLICATION = "backend.wsgi.application"
APPEND_SLASH = True

# -----------------------------------------
# TEMPLATES (required for Django admin)
# -----------------------------------------
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [str(BASE_DIR / "templates")],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

# -----------------------------------------
# REST FRAMEWORK
# -----------------------------------------
REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
    "DEFAULT_FILTER_BACKENDS": ("django_filters.rest_framework.DjangoFilterBackend",),
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_THROTTLE_CLASSES": (
        "rest_framework.throttling.AnonRateThrottle",
        "rest_framework.throttling.UserRateThrottle",
    ),
    "DEFAULT_THROTTLE_RATES": {
        "anon": "10000/min" if TESTING else env("THROTTLE_ANON_RATE"),
        "user": "10000/min" if TESTING else env("THROTTLE_USER_RATE"),
        "checkout_write": env("THROTTLE_CHECKOUT_WRITE_RATE"),
        "status_poll": env("THROTTLE_STATUS_POLL_RATE"),
        "webhook": env("THROTTLE_WEBHOOK_RATE"),
    },
}

# -----------------------------------------
# SIMPLE JWT
# -----------------------------------------
SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=30),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=1),
}

# -----------------------------------------
# DATABASE
# -----------------------------------------
DATABASES = {
    "default": env.db("DATABASE_URL"),
}

# -----------------------------------------
# STOREFRONT BASE URL
# -----------------------------------------
APP_BASE_URL = (env("APP_BASE_URL") or "http://localhost:3000").strip().rstrip("/")

# -----------------------------------------
# PAYMENTS (Pesapal v3)
# -----------------------------------------
PAYMENTS = {
    "PESAPAL": {
        "CONSUMER_KEY": (env("PESAPAL_CONSUMER_KEY") or "").strip(),
        "CONSUMER_SECRET": (env("PESAPAL_CONSUMER_SECRET") or "").strip(),
        "ENVIRONMENT": (env("PESAPAL_ENVIRONMENT") or "sandbox").strip().lower(),
        "CALLBACK_URL": (env("PESAPAL_CALLBACK_URL") or "").strip(),
        "IPN_URL": (env("PESAPAL_IPN_URL") or "").strip(),
        "TIMEOUT_SECONDS": env.int("PESAPAL_TIMEOUT_SECONDS"),
        "TOKEN_TTL_SECONDS": env.int("PESAPAL_TOKEN_TTL_SECONDS"),
        "CURRENCY": "KES",
        "COUNTRY_CODE": "KE",
    }
}

PAYMENT_POLLING = {
    "INTERVAL_SECONDS": env.float("PAYMENT_POLL_INTERVAL_SECONDS"),
    "MAX_ATTEMPTS": env.int("PAYMENT_POLL_MAX_ATTEMPTS"),
    # Cap for the anonymous poll endpoint; each attempt holds a worker.
    "HTTP_MAX_ATTEMPTS": env.int("PAYMENT_POLL_HTTP_MAX_ATTEMPTS"),
}

# -----------------------------------------
# DELIVERY PRICING
# -----------------------------------------
# Counties are priced by a flat base; options scale the base.
DELIVERY = {
    "FREE_SHIPPING_THRESHOLD": env("FREE_SHIPPING_THRESHOLD"),
    "COUNTIES": [
        {"name": "Nairobi (Store Pickup)", "distance": 0, "delivery_base": "0"},
        {"name": "Kiambu", "distance": 20, "delivery_base": "200"},
        {"name": "Machakos", "distance": 60, "delivery_base": "400"},
        {"name": "Kajiado", "distance": 80, "delivery_base": "500"},
        {"name": "Nakuru", "distance": 160, "delivery_base": "800"},
        {"name": "Mombasa", "distance": 485, "delivery_base": "1500"},
        {"name": "Kisumu", "distance": 345, "delivery_base": "1200"},
        {"name": "Eldoret", "distance": 310, "delivery_base": "1100"},
        {"name": "Thika", "distance": 45, "delivery_base": "300"},
        {"name": "Nyeri", "distance": 150, "delivery_base": "700"},
    ],
    "OPTIONS": [
        {"name": "Standard (5-7 days)", "multiplier": "1"},
        {"name": "Express (2-3 days)", "multiplier": "1.5"},
        {"name": "Overnight (Next day)", "multiplier": "2"},
    ],
}

# -----------------------------------------
# LOGGING
# -----------------------------------------
LOG_LEVEL = (env("LOG_LEVEL") or "INFO").strip().upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "orders": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "payments": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# -----------------------------------------
# SENTRY (optional)
# -----------------------------------------
SENTRY_DSN = (env("SENTRY_DSN") or "").strip()
SENTRY_ENVIRONMENT = (env("SENTRY_ENVIRONMENT") or "development").strip()
SENTRY_TRACES_SAMPLE_RATE = float(env("SENTRY_TRACES_SAMPLE_RATE"))
SENTRY_SEND_PII = env.bool("SENTRY_SEND_PII")

if SENTRY_DSN:
    import sentry_sdk
    from sentry_sdk.integrations.django import DjangoIntegration

    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=SENTRY_ENVIRONMENT,
        integrations=[DjangoIntegration()],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=SENTRY_SEND_PII,
    )

# -----------------------------------------
# CORS / CSRF
# -----------------------------------------
CORS_ALLOWED_ORIGINS = env.list("CORS_ALLOWED_ORIGINS")
CORS_ALLOW_CREDENTIALS = True
CORS_ALLOW_METHODS = list(default_methods)
CORS_ALLOW_HEADERS = list(default_headers)

CSRF_TRUSTED_ORIGINS = env.list("CSRF_TRUSTED_ORIGINS")

# -----------------------------------------
# STATIC FILES
# -----------------------------------------
STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# -----------------------------------------
# SWAGGER
# -----------------------------------------
SPECTACULAR_SETTINGS = {
    "TITLE": "Storefront Backend API",
    "DESCRIPTION": "Checkout, Pesapal payment orchestration and order tracking API",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}
