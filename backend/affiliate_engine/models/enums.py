from enum import Enum

# Stored as strings with DB check constraints (native enums disabled for easier evolution).


class AffiliateStatusEnum(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class AffiliateTypeEnum(str, Enum):
    INDIVIDUAL = "individual"
    COMPANY = "company"


class ReferralTypeEnum(str, Enum):
    CODE = "code"
    CUSTOMER_REFERRAL = "customer_referral"


class CommissionStatusEnum(str, Enum):
    # Forward only: pending -> earned -> paid.
    PENDING = "pending"
    EARNED = "earned"
    PAID = "paid"


class PayoutMethodEnum(str, Enum):
    GATEWAY = "gateway"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"


class PayoutStatusEnum(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
