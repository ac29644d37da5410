from decimal import Decimal
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.orders")

# allowed drift between gateway-reported amount and order total, base unit
AMOUNT_TOLERANCE = Decimal("0.01")

ORDER_NUMBER_ATTEMPTS = 5

DELETABLE_STATUSES = ("pending", "cancelled")

REQUIRED_ADDRESS_FIELDS = (
    "first_name", "last_name", "email", "phone",
    "address", "city", "state", "country", "postal_code",
)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
