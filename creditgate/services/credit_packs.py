"""
Credit pack policy - maps a paid amount to a credit grant.

Two variants, chosen by CREDIT_PACK_MODE:
- tiered: amount >= premium price buys the premium pack, anything else basic
- fixed: every payment buys the same pack
"""

from decimal import Decimal
from typing import Literal

from creditgate.config import Settings
from creditgate.models.domain import CreditGrant

BASIC_PACKAGE = "basic"
PREMIUM_PACKAGE = "premium"
FIXED_PACKAGE = "standard"


class CreditPackPolicy:
    """Resolve a payment amount to the pack it buys."""

    def __init__(
        self,
        mode: Literal["tiered", "fixed"] = "tiered",
        basic_price: Decimal = Decimal("5"),
        basic_credits: int = 2000,
        premium_price: Decimal = Decimal("10"),
        premium_credits: int = 5000,
        fixed_credits: int = 2000,
    ) -> None:
        self.mode = mode
        self.basic_price = basic_price
        self.basic_credits = basic_credits
        self.premium_price = premium_price
        self.premium_credits = premium_credits
        self.fixed_credits = fixed_credits

    @classmethod
    def from_settings(cls, config: Settings) -> "CreditPackPolicy":
        return cls(
            mode=config.credit_pack_mode,
            basic_price=config.basic_pack_price,
            basic_credits=config.basic_pack_credits,
            premium_price=config.premium_pack_price,
            premium_credits=config.premium_pack_credits,
            fixed_credits=config.fixed_pack_credits,
        )

    @property
    def requires_amount(self) -> bool:
        return self.mode == "tiered"

    def resolve(self, amount: Decimal | None) -> CreditGrant:
        """
        Credits for a payment of `amount`.

        Raises:
            ValueError: tiered mode and the amount is missing or not positive
        """
        if self.mode == "fixed":
            return CreditGrant(package=FIXED_PACKAGE, credits=self.fixed_credits)

        if amount is None or amount <= 0:
            raise ValueError(f"Payment amount must be positive, got {amount}")
        if amount >= self.premium_price:
            return CreditGrant(package=PREMIUM_PACKAGE, credits=self.premium_credits)
        return CreditGrant(package=BASIC_PACKAGE, credits=self.basic_credits)
