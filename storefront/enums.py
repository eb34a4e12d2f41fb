import enum


class CartStatus(str, enum.Enum):
    ACTIVE = "active"
    ABANDONED = "abandoned"
    CONVERTED = "converted"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CheckoutStatus(str, enum.Enum):
    STARTED = "started"
    SHIPPING_INFO = "shipping_info"
    PAYMENT_INFO = "payment_info"
    REVIEW = "review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class CouponFailureReason(str, enum.Enum):
    BLANK = "blank"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NOT_STARTED = "not_started"
    USAGE_EXCEEDED = "usage_exceeded"
    BELOW_MINIMUM = "below_minimum"
