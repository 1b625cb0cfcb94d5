import os

from dotenv import load_dotenv

load_dotenv()


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

# Redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
CACHE_TTL = int(os.getenv("CACHE_TTL", 60 * 10))

# JWT / cookies
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60 * 24))  # 1 day
COOKIE_NAME = "token"
COOKIE_SECURE = _bool(os.getenv("COOKIE_SECURE", "false"))
RESET_TOKEN_TTL = 5 * 60

# Rate limiting: RATE_LIMIT_MAX requests per RATE_LIMIT_WINDOW seconds
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", 5))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW", 15 * 60))

# Object storage
S3_ENDPOINT = os.getenv("S3_ENDPOINT", "http://localhost:9000")
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_ACCESS_KEY_ID = os.getenv("S3_ACCESS_KEY_ID", "")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY", "")
S3_BUCKET = os.getenv("S3_BUCKET", "storefront")
MAX_UPLOAD_BYTES = 5 * 1024 * 1024

# Mail
RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
MAIL_FROM = os.getenv("MAIL_FROM", "Smart Commerce <no-reply@example.com>")
CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:3000")

# Checkout / brand
ADMIN_PHONE = os.getenv("ADMIN_PHONE", "")
DEFAULT_CURRENCY = "NGN"
STAGED_ORDER_TTL = 24 * 60 * 60
BRAND_INFO = {
    "name": os.getenv("BRAND_NAME", "Smart Commerce"),
    "address": os.getenv("BRAND_ADDRESS", ""),
    "phone": os.getenv("BRAND_PHONE", ""),
    "whatsapp": os.getenv("BRAND_WHATSAPP", ""),
    "email": os.getenv("BRAND_EMAIL", ""),
    "website": os.getenv("BRAND_WEBSITE", ""),
}

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = _bool(os.getenv("LOG_JSON", "false"))

PORT = int(os.getenv("PORT", 8000))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
