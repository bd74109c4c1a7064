from .settings import *

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

STRIPE_SECRET_KEY = 'sk_test_fake_key_for_testing'
STRIPE_WEBHOOK_SECRET = 'whsec_fake_secret_for_testing'
PAYMENTS_ENABLED = True
BOOKING_STATUS_CALLBACK_URL = ''
COMPLETION_MAX_FAILED_ATTEMPTS = 0
LOG_LEVEL = 'CRITICAL'
LOGGING['loggers']['bookings']['level'] = LOG_LEVEL
LOGGING['loggers']['payments']['level'] = LOG_LEVEL
