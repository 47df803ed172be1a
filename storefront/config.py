import os


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def _env_list(name, default):
    raw = os.environ.get(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def _load_price_env():
    """Collect every STRIPE_PRICE_* variable (the catalog source)."""
    return {
        key: value
        for key, value in os.environ.items()
        if key.startswith("STRIPE_PRICE_") and value
    }


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

    # --- Stripe ---
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION = os.environ.get("STRIPE_API_VERSION", "2024-06-20")
    STRIPE_MAX_NETWORK_RETRIES = int(os.environ.get("STRIPE_MAX_NETWORK_RETRIES", 2))
    STRIPE_WEBHOOK_TOLERANCE = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE", 300))

    # Canonical base URL for Stripe return URLs and email links.
    # Never derived from request headers.
    PUBLIC_SITE_URL = os.environ.get("PUBLIC_SITE_URL", "http://localhost:5173")

    # --- Catalog ---
    # Price IDs come from STRIPE_PRICE_<SLUG>_ONETIME and
    # STRIPE_PRICE_<SLUG>_SUB_<N>W env vars.
    PRODUCT_SLUGS = _env_list(
        "PRODUCT_SLUGS",
        ["strawberry-guava", "lemon-yuzu", "raspberry-dragonfruit"],
    )
    RECURRENCE_OPTIONS = _env_list("RECURRENCE_OPTIONS", ["2", "4", "6"])
    STRIPE_PRICES = _load_price_env()

    # --- Checkout ---
    CHECKOUT_MAX_QUANTITY = int(os.environ.get("CHECKOUT_MAX_QUANTITY", 20))
    CHECKOUT_ALLOWED_COUNTRIES = _env_list("CHECKOUT_ALLOWED_COUNTRIES", ["US"])
    CHECKOUT_METADATA_SOURCE = os.environ.get("CHECKOUT_METADATA_SOURCE", "kimora-site")

    # --- Magic-link portal tokens ---
    PORTAL_TOKEN_SECRET = (
        os.environ.get("PORTAL_TOKEN_SECRET") or os.environ.get("SESSION_SECRET")
    )
    PORTAL_TOKEN_TTL_MINUTES = int(os.environ.get("PORTAL_TOKEN_TTL_MINUTES", 15))
    PORTAL_TOKEN_STRATEGY = os.environ.get("PORTAL_TOKEN_STRATEGY", "stateless")  # stateless | single_use

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("MAIL_SMTP_HOST", "smtp.gmail.com")
    MAIL_SMTP_PORT = int(os.environ.get("MAIL_SMTP_PORT", 587))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_FROM_NAME = os.environ.get("MAIL_FROM_NAME", "Kimora Co")
    MAIL_FROM_ADDRESS = os.environ.get("MAIL_FROM_ADDRESS")  # defaults to MAIL_USERNAME
    MAIL_SUPPORT_ADDRESS = os.environ.get("MAIL_SUPPORT_ADDRESS", "alex@kimoraco.com")

    # --- SQLAlchemy ---
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # --- Rate limiting ---
    RATELIMIT_ENABLED = not _env_flag("RATELIMIT_DISABLED")

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = [
            "DATABASE_URL",
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "PUBLIC_SITE_URL",
        ]
        missing = [v for v in required if not os.environ.get(v)]
        if not (os.environ.get("PORTAL_TOKEN_SECRET") or os.environ.get("SESSION_SECRET")):
            missing.append("PORTAL_TOKEN_SECRET")
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True


class TestConfig(Config):
    """Testing — in-memory SQLite, fake Stripe keys, fixed catalog."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = "sk_test_fake"
    STRIPE_WEBHOOK_SECRET = "whsec_test_fake"
    PUBLIC_SITE_URL = "http://localhost:5173"
    PRODUCT_SLUGS = ["strawberry-guava", "lemon-yuzu", "raspberry-dragonfruit"]
    RECURRENCE_OPTIONS = ["2", "4", "6"]
    STRIPE_PRICES = {
        "STRIPE_PRICE_STRAWBERRY_GUAVA_ONETIME": "price_sg_once",
        "STRIPE_PRICE_STRAWBERRY_GUAVA_SUB_2W": "price_sg_2w",
        "STRIPE_PRICE_STRAWBERRY_GUAVA_SUB_4W": "price_sg_4w",
        "STRIPE_PRICE_STRAWBERRY_GUAVA_SUB_6W": "price_sg_6w",
        "STRIPE_PRICE_LEMON_YUZU_ONETIME": "price_ly_once",
        "STRIPE_PRICE_LEMON_YUZU_SUB_2W": "price_ly_2w",
        "STRIPE_PRICE_LEMON_YUZU_SUB_4W": "price_ly_4w",
        "STRIPE_PRICE_LEMON_YUZU_SUB_6W": "price_ly_6w",
        "STRIPE_PRICE_RASPBERRY_DRAGONFRUIT_ONETIME": "price_rd_once",
        # raspberry-dragonfruit subscriptions deliberately left unconfigured
    }
    PORTAL_TOKEN_SECRET = "portal-token-secret-for-tests-0123456789"
    PORTAL_TOKEN_TTL_MINUTES = 15
    PORTAL_TOKEN_STRATEGY = "stateless"
    MAIL_USERNAME = None
    MAIL_PASSWORD = None
    RATELIMIT_ENABLED = False  # disable rate limiting in tests
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode — everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
