
from pathlib import Path
from datetime import timedelta
import os
BASE_DIR = Path(__file__).resolve().parent.parent


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-3q!v8x1kz@delivery-local-only-key")


DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() in {"1", "true", "yes", "on"}

ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "").split(",") if h]



INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    'rest_framework',
    #apps
    'account',
    'vendor',
    'order',
    'notifications',
    'delivery',

]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "core.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "core.wsgi.application"



DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
        # SQLite ignores select_for_update; IMMEDIATE takes the write lock at BEGIN.
        "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
        "TEST": {"NAME": BASE_DIR / "test_db.sqlite3"},
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "delivery-default",
    }
}


AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]



LANGUAGE_CODE = "en-us"

TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True



STATIC_URL = "static/"


DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
}



SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=60),   # 1 hour
    "REFRESH_TOKEN_LIFETIME": timedelta(days=30),     # 30 days

    "ROTATE_REFRESH_TOKENS": True,
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
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
        "level": os.getenv("DJANGO_LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "delivery": {
            "handlers": ["console"],
            "level": os.getenv("DELIVERY_LOG_LEVEL", "INFO"),
            "propagate": False,
        },
    },
}

# Delivery providers
DELIVERY_HTTP_TIMEOUT = int(os.getenv("DELIVERY_HTTP_TIMEOUT", "20"))
DELIVERY_HTTP_MAX_RETRIES = int(os.getenv("DELIVERY_HTTP_MAX_RETRIES", "3"))
# Only for local development: accept webhooks when no signing secret is configured.
DELIVERY_ALLOW_UNSIGNED_WEBHOOKS = os.getenv("DELIVERY_ALLOW_UNSIGNED_WEBHOOKS", "false").lower() in {"1", "true", "yes", "on"}

# Shipbubble (domestic, scheduled rate shopping)
SHIPBUBBLE_API_KEY = os.getenv("SHIPBUBBLE_API_KEY", "")
SHIPBUBBLE_BASE_URL = os.getenv("SHIPBUBBLE_BASE_URL", "https://api.shipbubble.com/v1")
SHIPBUBBLE_WEBHOOK_SECRET = os.getenv("SHIPBUBBLE_WEBHOOK_SECRET", "")
SHIPBUBBLE_PACKAGE_CATEGORY_ID = os.getenv("SHIPBUBBLE_PACKAGE_CATEGORY_ID", "")
SHIPBUBBLE_QUOTE_TTL_MINUTES = int(os.getenv("SHIPBUBBLE_QUOTE_TTL_MINUTES", "0"))

# Uber Direct (international, on-demand quotes)
UBER_CLIENT_ID = os.getenv("UBER_CLIENT_ID", "")
UBER_CLIENT_SECRET = os.getenv("UBER_CLIENT_SECRET", "")
UBER_CUSTOMER_ID = os.getenv("UBER_CUSTOMER_ID", "")
UBER_BASE_URL = os.getenv("UBER_BASE_URL", "https://api.uber.com/v1")
UBER_AUTH_URL = os.getenv("UBER_AUTH_URL", "https://auth.uber.com/oauth/v2/token")
UBER_WEBHOOK_SIGNING_KEY = os.getenv("UBER_WEBHOOK_SIGNING_KEY", "")

# Firebase push (optional)
FCM_SERVICE_ACCOUNT_FILE = os.getenv("FCM_SERVICE_ACCOUNT_FILE", "")
FCM_SERVICE_ACCOUNT_JSON = os.getenv("FCM_SERVICE_ACCOUNT_JSON", "")
FCM_PROJECT_ID = os.getenv("FCM_PROJECT_ID", "")
