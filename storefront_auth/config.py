"""
Storefront auth configuration. No secrets in this file; credentials come from env.
"""
import os

# App registration at the external platform
API_KEY = os.environ.get("STOREFRONT_API_KEY", "test-api-key")
API_SECRET = os.environ.get("STOREFRONT_API_SECRET", "")

# Comma-separated scopes requested at authorization time
SCOPES = os.environ.get("STOREFRONT_SCOPES", "read_products,read_orders")

# Public base URL of this app (completion endpoint lives at /auth/callback)
APP_URL = os.environ.get("STOREFRONT_APP_URL", "http://127.0.0.1:8000").rstrip("/")
REDIRECT_URI = os.environ.get("STOREFRONT_REDIRECT_URI", f"{APP_URL}/auth/callback")

# Where a completed handshake lands
APP_HOME_URL = os.environ.get("STOREFRONT_APP_HOME_URL", f"{APP_URL}/")

# Pending handshake lifetime (seconds). Carrier token TTL must equal this.
HANDSHAKE_TTL_SECONDS = int(os.environ.get("STOREFRONT_HANDSHAKE_TTL_SECONDS", "600"))

# Interval of the background expiry sweep (seconds)
SWEEP_INTERVAL_SECONDS = float(os.environ.get("STOREFRONT_SWEEP_INTERVAL_SECONDS", "60"))

# Bound on the code-for-credential network call (seconds)
EXCHANGE_TIMEOUT_SECONDS = float(os.environ.get("STOREFRONT_EXCHANGE_TIMEOUT_SECONDS", "10"))

# Carrier signing secret. If unset, loaded from (or generated into) CARRIER_SECRET_PATH.
CARRIER_SECRET = os.environ.get("STOREFRONT_CARRIER_SECRET", "").strip() or None
CARRIER_SECRET_PATH = os.environ.get("STOREFRONT_CARRIER_SECRET_PATH", ".carrier_secret")

# Cookie holding the carrier token between initiation and completion
CARRIER_COOKIE_NAME = os.environ.get("STOREFRONT_CARRIER_COOKIE", "handshake_carrier")
CARRIER_COOKIE_SECURE = os.environ.get("STOREFRONT_CARRIER_COOKIE_SECURE", "true").lower() in ("1", "true", "yes")

# Optional required suffix for tenant domains (e.g. "myshopify.com"); empty accepts any hostname
TENANT_DOMAIN_SUFFIX = os.environ.get("STOREFRONT_TENANT_DOMAIN_SUFFIX", "").strip().lower().lstrip(".")

# SQLite for development; any SQLAlchemy URL works
DATABASE_URL = os.environ.get("STOREFRONT_DATABASE_URL", "sqlite:///./storefront_auth.db")

# Rate limiting on the initiation endpoint: per-IP, per minute
RATE_LIMIT_INITIATE_PER_MINUTE = int(os.environ.get("STOREFRONT_RATE_LIMIT_INITIATE_PER_MINUTE", "30"))
