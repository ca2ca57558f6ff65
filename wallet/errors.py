from decimal import Decimal


class WalletServiceError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(WalletServiceError):
    status_code = 400


class NotFoundError(WalletServiceError):
    status_code = 404


class AuthorizationError(WalletServiceError):
    status_code = 403


class CouponIneligibleError(WalletServiceError):
    status_code = 400


class OrderStateError(WalletServiceError):
    status_code = 400


class InsufficientFundsError(WalletServiceError):
    status_code = 400

    def __init__(self, required: Decimal, available: Decimal):
        super().__init__("Insufficient wallet balance")
        self.required = required
        self.available = available

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "required": float(self.required),
            "available": float(self.available),
        }
