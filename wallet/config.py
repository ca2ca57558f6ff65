import os
from dataclasses import dataclass, field
from decimal import Decimal


def _csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./wallet.db"
    platform_fee_rate: Decimal = Decimal("0.0102")
    credit_point_value: Decimal = Decimal("0.5")
    loyalty_reward_rate: Decimal = Decimal("0.02")
    signup_bonus_points: int = 100
    min_redeem_points: int = 50
    merchant_upi_id: str = "gfuture@upi"
    merchant_name: str = "GFuture"
    cors_allow_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("WALLET_DATABASE_URL", cls.database_url),
            platform_fee_rate=Decimal(os.getenv("PLATFORM_FEE_RATE", str(cls.platform_fee_rate))),
            credit_point_value=Decimal(os.getenv("CREDIT_POINT_VALUE", str(cls.credit_point_value))),
            loyalty_reward_rate=Decimal(os.getenv("LOYALTY_REWARD_RATE", str(cls.loyalty_reward_rate))),
            signup_bonus_points=int(os.getenv("SIGNUP_BONUS_POINTS", cls.signup_bonus_points)),
            min_redeem_points=int(os.getenv("MIN_REDEEM_POINTS", cls.min_redeem_points)),
            merchant_upi_id=os.getenv("MERCHANT_UPI_ID", cls.merchant_upi_id),
            merchant_name=os.getenv("MERCHANT_NAME", cls.merchant_name),
            cors_allow_origins=_csv(os.getenv("CORS_ALLOW_ORIGINS", "*")),
        )
