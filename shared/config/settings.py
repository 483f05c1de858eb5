import os
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list[str]:
    return [part.strip().lower() for part in value.split(",") if part.strip()]


# Database
DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
DB_HOST = os.getenv("POSTGRES_HOST", "localhost") # In Docker, this will be 'postgres'
DB_PORT = os.getenv("POSTGRES_PORT", "5433")
DB_NAME = os.getenv("POSTGRES_DB", "ecommerce")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# Delivery zones
FAST_ZONE_KEYWORDS = _csv(os.getenv(
    "FAST_ZONE_KEYWORDS",
    "dhaka,dhanmondi,gulshan,banani,uttara,mirpur,motijheel,wari,old dhaka,ramna,"
    "tejgaon,mohammadpur,shantinagar,malibagh,eskaton,paltan,farmgate,karwan bazar,"
    "panthapath,lalmatia,kathalbagan,hatirpool,newmarket,azimpur,lalbagh,"
    "kamrangirchar,sadarghat,chawkbazar,sutrapur,kotwali,shahbagh,curzon hall,"
    "university area,tsc,nilkhet",
))
FAST_ZONE_DELIVERY_CHARGE = os.getenv("FAST_ZONE_DELIVERY_CHARGE", "70")
STANDARD_DELIVERY_CHARGE = os.getenv("STANDARD_DELIVERY_CHARGE", "130")
FAST_ZONE_DELIVERY_DAYS = int(os.getenv("FAST_ZONE_DELIVERY_DAYS", "2"))
STANDARD_DELIVERY_DAYS = int(os.getenv("STANDARD_DELIVERY_DAYS", "4"))

# Payments
PAYMENT_GATEWAY_URL = os.getenv("PAYMENT_GATEWAY_URL", "")
PAYMENT_GATEWAY_TIMEOUT = float(os.getenv("PAYMENT_GATEWAY_TIMEOUT", "10.0"))
REFUND_WINDOW_DAYS = int(os.getenv("REFUND_WINDOW_DAYS", "30"))

# Retry policy for ConflictRetry / StorageUnavailable
LEDGER_MAX_ATTEMPTS = int(os.getenv("LEDGER_MAX_ATTEMPTS", "3"))
LEDGER_RETRY_BASE_DELAY = float(os.getenv("LEDGER_RETRY_BASE_DELAY", "0.2"))
LEDGER_RETRY_MAX_DELAY = float(os.getenv("LEDGER_RETRY_MAX_DELAY", "5.0"))

# Notifications (fire-and-forget webhook)
NOTIFICATION_WEBHOOK_URL = os.getenv("NOTIFICATION_WEBHOOK_URL", "")
NOTIFICATION_TIMEOUT = float(os.getenv("NOTIFICATION_TIMEOUT", "5.0"))

# Rate limits
ORDER_RATE_LIMIT = os.getenv("ORDER_RATE_LIMIT", "30/minute")
