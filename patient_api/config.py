import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
IS_PRODUCTION = ENVIRONMENT == "production"

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg://localhost:5432/fuse")

# AWS RDS CA bundle used for TLS verification of remote databases
# Download from: https://truststore.pki.rds.amazonaws.com/global/global-bundle.pem
DB_CA_CERT_PATH = os.getenv(
    "DB_CA_CERT_PATH", str(Path(__file__).resolve().parent.parent / "certs" / "rds-ca-bundle.pem")
)
DB_BOOTSTRAP_ON_STARTUP = os.getenv("DB_BOOTSTRAP_ON_STARTUP", "true").lower() == "true"

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = "HS256"
JWT_EXPIRES_HOURS = int(os.getenv("JWT_EXPIRES_HOURS", "24"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# NPPES NPI Registry (public, no credentials)
NPI_REGISTRY_URL = os.getenv("NPI_REGISTRY_URL", "https://npiregistry.cms.hhs.gov/api/")

# IronSail Pharmacy Configuration
IRONSAIL_API_BASE_URL = os.getenv(
    "IRONSAIL_API_BASE_URL", "https://sandbox.api.impetusrx.com/pharmacy/fuse-sandbox/api/v1"
)
IRONSAIL_TENANT = os.getenv("IRONSAIL_TENANT", "fuse-sandbox")
IRONSAIL_CLIENT_ID = os.getenv("IRONSAIL_CLIENT_ID")
IRONSAIL_CLIENT_SECRET = os.getenv("IRONSAIL_CLIENT_SECRET")
IRONSAIL_SETUP_TOKEN = os.getenv("IRONSAIL_SETUP_TOKEN")
IRONSAIL_WEBHOOK_URL = os.getenv("IRONSAIL_WEBHOOK_URL")
IRONSAIL_DEFAULT_PHARMACY_ID = os.getenv("IRONSAIL_DEFAULT_PHARMACY_ID")

# Olympia Pharmacy Configuration
OLYMPIA_PHARMACY_API_URL = os.getenv("OLYMPIA_PHARMACY_API_URL", "https://staging.olympiapharmacy.com")
OLYMPIA_PHARMACY_USERNAME = os.getenv("OLYMPIA_PHARMACY_USERNAME")
OLYMPIA_PHARMACY_PASSWORD = os.getenv("OLYMPIA_PHARMACY_PASSWORD")
OLYMPIA_PHARMACY_SECRET = os.getenv("OLYMPIA_PHARMACY_SECRET")
OLYMPIA_PHARMACY_WEBHOOK_SECRET = os.getenv("OLYMPIA_PHARMACY_WEBHOOK_SECRET")

# MD Integrations webhooks
MD_INTEGRATIONS_WEBHOOK_SECRET = os.getenv("MD_INTEGRATIONS_WEBHOOK_SECRET")
MD_INTEGRATIONS_WEBHOOK_SIGNATURE_HEADER = os.getenv(
    "MD_INTEGRATIONS_WEBHOOK_SIGNATURE_HEADER", "x-md-signature"
).lower()

# Stripe Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_PLATFORM_ACCOUNT_ID = os.getenv("STRIPE_PLATFORM_ACCOUNT_ID")

# Percentage of an order total paid to the referring affiliate
AFFILIATE_REVENUE_PERCENTAGE = float(os.getenv("AFFILIATE_REVENUE_PERCENTAGE", "1"))

# CORS: comma-separated portal origins
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]

# Reverse proxies whose X-Forwarded-For header is trusted for client IPs
TRUSTED_PROXY_IPS = {
    ip.strip() for ip in os.getenv("TRUSTED_PROXY_IPS", "").split(",") if ip.strip()
}
