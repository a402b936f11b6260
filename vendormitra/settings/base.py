from dotenv import load_dotenv
load_dotenv()

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-secret-key")
DEBUG = _env_bool("DJANGO_DEBUG")
ALLOWED_HOSTS = [h.strip() for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "payments",
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

ROOT_URLCONF = "vendormitra.urls"
WSGI_APPLICATION = "vendormitra.wsgi.application"

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
    },
]

DATABASES = {
    "default": {
        "ENGINE": os.getenv("DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.getenv("DB_USER", ""),
        "PASSWORD": os.getenv("DB_PASSWORD", ""),
        "HOST": os.getenv("DB_HOST", ""),
        "PORT": os.getenv("DB_PORT", ""),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "Asia/Kolkata"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"

# Email
EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.smtp.EmailBackend")
EMAIL_HOST = os.getenv("EMAIL_HOST", "localhost")
EMAIL_PORT = int(os.getenv("EMAIL_PORT", "587"))
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS", "true")
EMAIL_FAIL_SILENTLY = _env_bool("EMAIL_FAIL_SILENTLY")
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "noreply@vendormitra.com")
PAYMENTS_FROM_EMAIL = os.getenv("PAYMENTS_FROM_EMAIL", DEFAULT_FROM_EMAIL)

# Identity service tokens (issued elsewhere, only decoded here)
JWT_SECRET = os.getenv("JWT_SECRET", "")

# Instamojo gateway. Webhook and redirect URLs are fixed per deployment.
INSTAMOJO = {
    "API_KEY": os.getenv("INSTAMOJO_API_KEY", ""),
    "AUTH_TOKEN": os.getenv("INSTAMOJO_AUTH_TOKEN", ""),
    "PRIVATE_SALT": os.getenv("INSTAMOJO_PRIVATE_SALT", ""),
    "BASE_URL": os.getenv("INSTAMOJO_BASE_URL", "https://test.instamojo.com/api/1.1/"),
    "WEBHOOK_URL": os.getenv("INSTAMOJO_WEBHOOK_URL", ""),
    "REDIRECT_URL": os.getenv("INSTAMOJO_REDIRECT_URL", ""),
    "SEND_EMAIL": _env_bool("INSTAMOJO_SEND_EMAIL"),
    "SEND_SMS": _env_bool("INSTAMOJO_SEND_SMS"),
    "TIMEOUT": float(os.getenv("INSTAMOJO_TIMEOUT", "30")),
}

PAYMENTS_RECONCILE_AFTER_MINUTES = int(os.getenv("PAYMENTS_RECONCILE_AFTER_MINUTES", "30"))
PAYMENTS_EXPIRE_AFTER_MINUTES = int(os.getenv("PAYMENTS_EXPIRE_AFTER_MINUTES", "1440"))
PAYMENTS_NOTIFIER = os.getenv("PAYMENTS_NOTIFIER", "payments.notifications.EmailNotifier")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {"format": "%(asctime)s %(levelname)s %(name)s: %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
    },
    "root": {"handlers": ["console"], "level": os.getenv("LOG_LEVEL", "INFO")},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "payments": {"handlers": ["console"], "level": os.getenv("PAYMENTS_LOG_LEVEL", "INFO"), "propagate": False},
    },
}
