"""Share ledger and asset/share conversion.

Owns total share supply, per-holder balances and share allowances. All
conversion math is integer fixed-point with explicit rounding direction:

    shares_for(assets) = assets * total_shares / value   (1:1 when no shares exist)
    assets_for(shares) = shares * value / total_shares   (error when no shares exist)

The caller picks the rounding direction so that the pool always keeps the
remainder: shares issued and assets paid round down, assets pulled and shares
burned round up.
"""

from enum import Enum
from typing import Dict, Tuple

from msvault.core.errors import (
    InsufficientAllowance,
    InsufficientShares,
    InsufficientState,
    InvalidAddress,
    NoSharesOutstanding,
    ValidationError,
)


class Rounding(str, Enum):
    DOWN = "down"
    UP = "up"


def mul_div(a: int, b: int, denominator: int, rounding: Rounding = Rounding.DOWN) -> int:
    """Compute a * b / denominator on integers with the given rounding."""
    if denominator <= 0:
        raise ZeroDivisionError("mul_div denominator must be positive")
    quotient, remainder = divmod(a * b, denominator)
    if rounding == Rounding.UP and remainder:
        quotient += 1
    return quotient


class ShareLedger:
    """Share supply, balances and allowances for the pool."""

    def __init__(self, name: str = "Multi Strategy Vault", symbol: str = "MSV", decimals: int = 6):
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self.total_supply = 0

    # ==================== Conversion ====================

    def shares_for(self, assets: int, value: int, rounding: Rounding = Rounding.DOWN) -> int:
        """Shares corresponding to ``assets`` at pool value ``value``."""
        if self.total_supply == 0:
            return assets
        if value <= 0:
            raise InsufficientState(
                "Pool value is zero while shares are outstanding",
                total_supply=self.total_supply,
            )
        return mul_div(assets, self.total_supply, value, rounding)

    def assets_for(self, shares: int, value: int, rounding: Rounding = Rounding.DOWN) -> int:
        """Assets corresponding to ``shares`` at pool value ``value``."""
        if self.total_supply == 0:
            raise NoSharesOutstanding()
        return mul_div(shares, value, self.total_supply, rounding)

    # ==================== Balances ====================

    def balance_of(self, holder: str) -> int:
        return self._balances.get(holder, 0)

    def holders(self) -> Dict[str, int]:
        return {h: b for h, b in self._balances.items() if b > 0}

    def mint(self, to: str, shares: int) -> None:
        if not to:
            raise InvalidAddress("receiver")
        self._balances[to] = self.balance_of(to) + shares
        self.total_supply += shares

    def burn(self, holder: str, shares: int) -> None:
        balance = self.balance_of(holder)
        if shares > balance:
            raise InsufficientShares(holder, shares, balance)
        self._balances[holder] = balance - shares
        self.total_supply -= shares

    def transfer(self, sender: str, to: str, shares: int) -> None:
        if not to:
            raise InvalidAddress("to")
        if shares < 0:
            raise ValidationError("Share amount must be non-negative", shares=shares)
        balance = self.balance_of(sender)
        if shares > balance:
            raise InsufficientShares(sender, shares, balance)
        self._balances[sender] = balance - shares
        self._balances[to] = self.balance_of(to) + shares

    # ==================== Allowances ====================

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, shares: int) -> None:
        if not owner or not spender:
            raise InvalidAddress("spender" if owner else "owner")
        if shares < 0:
            raise ValidationError("Allowance must be non-negative", shares=shares)
        self._allowances[(owner, spender)] = shares

    def spend_allowance(self, owner: str, spender: str, shares: int) -> None:
        """Consume allowance when a third party moves or burns owner's shares."""
        if owner == spender:
            return
        current = self.allowance(owner, spender)
        if shares > current:
            raise InsufficientAllowance(owner, spender, shares, current)
        self._allowances[(owner, spender)] = current - shares

    def load(self, balances: Dict[str, int]) -> None:
        """Replace balances, e.g. when restoring from storage. Allowances are cleared."""
        self._balances = {h: b for h, b in balances.items() if b > 0}
        self._allowances = {}
        self.total_supply = sum(self._balances.values())

    # ==================== Checkpointing ====================

    def checkpoint(self) -> Tuple[Dict[str, int], Dict[Tuple[str, str], int], int]:
        return dict(self._balances), dict(self._allowances), self.total_supply

    def restore(self, token: Tuple[Dict[str, int], Dict[Tuple[str, str], int], int]) -> None:
        balances, allowances, supply = token
        self._balances = dict(balances)
        self._allowances = dict(allowances)
        self.total_supply = supply
