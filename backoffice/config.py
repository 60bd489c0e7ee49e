import os


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # Handle DATABASE_URL: some PaaS providers (Railway, Heroku) use
    # "postgres://" which SQLAlchemy 1.4+ doesn't accept.
    _db_url = os.environ.get("DATABASE_URL", "")
    if _db_url.startswith("postgres://"):
        _db_url = _db_url.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = _db_url or None

    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:5000")
    COMPANY_NAME = os.environ.get("COMPANY_NAME", "Economy Plumbing Services")

    # --- ServiceTitan ---
    SERVICETITAN_CLIENT_ID = os.environ.get("SERVICETITAN_CLIENT_ID")
    SERVICETITAN_CLIENT_SECRET = os.environ.get("SERVICETITAN_CLIENT_SECRET")
    SERVICETITAN_APP_KEY = os.environ.get("SERVICETITAN_APP_KEY")
    SERVICETITAN_TENANT_ID = os.environ.get("SERVICETITAN_TENANT_ID")
    SERVICETITAN_API_BASE = os.environ.get(
        "SERVICETITAN_API_BASE", "https://api.servicetitan.io"
    )
    SERVICETITAN_AUTH_URL = os.environ.get(
        "SERVICETITAN_AUTH_URL", "https://auth.servicetitan.io/connect/token"
    )
    SERVICETITAN_CACHE_TTL = int(os.environ.get("SERVICETITAN_CACHE_TTL", 300))  # seconds
    SERVICETITAN_WEBHOOK_SECRET = os.environ.get("SERVICETITAN_WEBHOOK_SECRET")

    # --- Customer lookup ---
    # xlsx-only | servicetitan-only | hybrid-prefer-xlsx | hybrid-prefer-servicetitan
    CUSTOMER_LOOKUP_SOURCE = os.environ.get(
        "CUSTOMER_LOOKUP_SOURCE", "hybrid-prefer-xlsx"
    )

    # --- OpenAI (nurture email generation) ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o")

    # --- Email (Resend) ---
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY")
    RESEND_FROM_EMAIL = os.environ.get(
        "RESEND_FROM_EMAIL", "Economy Plumbing <hello@mail.plumbersthatcare.com>"
    )
    RESEND_REPLY_TO = os.environ.get("RESEND_REPLY_TO", "hello@mail.plumbersthatcare.com")
    RESEND_WEBHOOK_SECRET = os.environ.get("RESEND_WEBHOOK_SECRET")
    MAIL_STAFF_TO = os.environ.get("MAIL_STAFF_TO")  # referral credit notifications

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # --- WTF / CSRF ---
    WTF_CSRF_ENABLED = True

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "SECRET_KEY",
            "DATABASE_URL",
            "SERVICETITAN_CLIENT_ID",
            "SERVICETITAN_CLIENT_SECRET",
            "SERVICETITAN_APP_KEY",
            "SERVICETITAN_TENANT_ID",
            "APP_BASE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing — in-memory SQLite, CSRF disabled."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    APP_BASE_URL = "http://localhost:5000"
    SERVICETITAN_CLIENT_ID = "st_client_fake"
    SERVICETITAN_CLIENT_SECRET = "st_secret_fake"
    SERVICETITAN_APP_KEY = "st_app_key_fake"
    SERVICETITAN_TENANT_ID = "123456"
    SERVICETITAN_WEBHOOK_SECRET = "st_webhook_fake"
    CUSTOMER_LOOKUP_SOURCE = "hybrid-prefer-xlsx"
    OPENAI_API_KEY = "sk-test-fake"
    RESEND_API_KEY = "re_test_fake"
    RESEND_WEBHOOK_SECRET = "re_webhook_fake"
    MAIL_STAFF_TO = None
    WTF_CSRF_ENABLED = False  # disable CSRF for test forms
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
