from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.payments")

PROVIDER = "paystack"

CHARGE_SUCCESS_EVENT = "charge.success"

# paystack transaction statuses folded into the outcomes the order flow cares about
GATEWAY_SUCCESS = "success"
GATEWAY_FAILED = "failed"
GATEWAY_ABANDONED = "abandoned"
GATEWAY_PENDING = "pending"   # charge still in flight, settles nothing

FAILED_GATEWAY_STATUSES = ("failed", "reversed")
ABANDONED_GATEWAY_STATUSES = ("abandoned",)
