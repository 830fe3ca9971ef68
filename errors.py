class PricingError(Exception):
    """Base class for everything the pricing engine raises."""


class InvalidPromotionParameters(PricingError, ValueError):
    def __init__(self, message, promotion_id=None):
        super().__init__(message)
        self.promotion_id = promotion_id


class UnsupportedPromotionType(InvalidPromotionParameters):
    pass


class CouponRejected(PricingError):
    def __init__(self, code, reason, message=None):
        super().__init__(message or f"Coupon {code} rejected: {reason}")
        self.code = code
        self.reason = reason


class NetworkUnavailable(PricingError):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ArithmeticInvariantViolation(PricingError, AssertionError):
    pass
