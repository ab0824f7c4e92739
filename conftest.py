import pytest


@pytest.fixture(autouse=True)
def _test_settings(settings):
    # Prevent SecurityMiddleware from forcing https://testserver/...
    settings.SECURE_SSL_REDIRECT = False
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False
    settings.SECURE_HSTS_SECONDS = 0

    # Pin pipeline behaviour so a local .env cannot change test outcomes
    settings.DENTLAB_START_FIRST_STAGE = True
    settings.DENTLAB_AUTO_SCHEDULE_ON_COMPLETION = False
    settings.DENTLAB_DELIVERY_ROLES = ["ADMIN", "LAB_MANAGER", "LAB_TECH", "COURIER"]
    settings.DENTLAB_CASE_CODE_PREFIX = "JOB"
