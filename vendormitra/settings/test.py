from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

ALLOWED_HOSTS = ['testserver']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
EMAIL_FAIL_SILENTLY = False

JWT_SECRET = 'test-jwt-secret'

INSTAMOJO = {
    'API_KEY': 'test-api-key',
    'AUTH_TOKEN': 'test-auth-token',
    'PRIVATE_SALT': 'test-private-salt',
    'BASE_URL': 'https://gateway.test/api/1.1/',
    'WEBHOOK_URL': 'https://vendormitra.test/payments/webhook',
    'REDIRECT_URL': 'https://vendormitra.test/payment/success',
    'SEND_EMAIL': False,
    'SEND_SMS': False,
    'TIMEOUT': 5,
}

PAYMENTS_RECONCILE_AFTER_MINUTES = 30
PAYMENTS_EXPIRE_AFTER_MINUTES = 1440
PAYMENTS_NOTIFIER = 'payments.notifications.EmailNotifier'
