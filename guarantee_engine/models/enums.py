import enum


class EscrowStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_RECEIVED = "payment_received"
    FUNDS_SECURED = "funds_secured"
    ORDER_PLACED = "order_placed"
    ORDER_CONFIRMED = "order_confirmed"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    VERIFICATION = "verification"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class GuaranteeType(str, enum.Enum):
    MONEY_BACK = "money_back"
    REPLACEMENT = "replacement"
    REPAIR = "repair"
    PARTIAL_REFUND = "partial_refund"


class RefundMethod(str, enum.Enum):
    WAVE = "wave"
    ORANGE_MONEY = "orange_money"
    BANK = "bank"
    OTHER = "other"


class DisputeDecision(str, enum.Enum):
    REFUND_FULL = "refund_full"
    REFUND_PARTIAL = "refund_partial"
    REPLACEMENT = "replacement"
    REJECTED = "rejected"


class EventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
