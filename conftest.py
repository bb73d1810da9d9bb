import os

# Load .env.test when present; the defaults below only fill what it leaves unset
from dotenv import load_dotenv

env_test_path = os.path.join(os.path.dirname(__file__), ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

# Settings are read at import time by libs.db.config, so the environment has
# to be in place before any service module is imported.
_TEST_ENV = {
    "ENVIRONMENT": "test",
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
    "STRAPI_URL": "http://strapi.test",
    "STRAPI_API_TOKEN": "strapi-test-token",
    "MP_ACCESS_TOKEN": "TEST-mp-token",
    "MP_API_URL": "https://mp.test",
    "RESEND_API_KEY": "re_test_key",
    "RESEND_API_URL": "https://resend.test",
    "EMAIL_FROM": "Amargo y Dulce <ventas@shop.test>",
    "SITE_URL": "https://shop.test",
    "SERVICE_JWT_SECRET": "test-service-secret",
    "STORE_SERVICE_URL": "http://store.test",
    "PAYMENTS_SERVICE_URL": "http://payments.test",
    "COMMUNICATIONS_SERVICE_URL": "http://communications.test",
}
for key, value in _TEST_ENV.items():
    os.environ.setdefault(key, value)

# A forced recipient would hide who the confirmation is addressed to
os.environ.pop("TEST_EMAIL_TO", None)

from libs.common.config import get_settings  # noqa: E402

# Clear cached settings to reload with the test env vars
get_settings.cache_clear()
settings = get_settings()
