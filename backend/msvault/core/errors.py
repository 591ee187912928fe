"""Vault error taxonomy.

Every rejected operation raises a subclass of VaultError. Validation and
invariant errors are raised before any state changes; the rest are unwound by
the vault transaction.
"""

from typing import Optional


class VaultError(Exception):
    """Base class for all vault errors."""

    code = "vault_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, "context": self.context}


# ==================== Validation ====================

class ValidationError(VaultError):
    """Malformed input: bad index, empty address, zero amount."""

    code = "validation_error"


class ZeroAmount(ValidationError):
    code = "zero_amount"

    def __init__(self, field: str):
        super().__init__(f"{field} must be greater than zero", field=field)


class InvalidAddress(ValidationError):
    code = "invalid_address"

    def __init__(self, field: str):
        super().__init__(f"{field} must be a non-empty address", field=field)


class InvalidStrategyIndex(ValidationError):
    code = "invalid_strategy_index"

    def __init__(self, index: int, count: int):
        super().__init__(
            f"Strategy index {index} out of range ({count} registered)",
            index=index,
            count=count,
        )


class DuplicateStrategy(ValidationError):
    code = "duplicate_strategy"

    def __init__(self, address: str, index: int):
        super().__init__(
            f"Strategy {address} is already active at index {index}",
            address=address,
            index=index,
        )


class InsufficientShares(ValidationError):
    code = "insufficient_shares"

    def __init__(self, holder: str, requested: int, available: int):
        super().__init__(
            f"{holder} holds {available} shares, {requested} requested",
            holder=holder,
            requested=requested,
            available=available,
        )


class InsufficientAllowance(ValidationError):
    code = "insufficient_allowance"

    def __init__(self, owner: str, spender: str, requested: int, available: int):
        super().__init__(
            f"{spender} may spend {available} of {owner}'s shares, {requested} requested",
            owner=owner,
            spender=spender,
            requested=requested,
            available=available,
        )


# ==================== Invariants ====================

class InvariantViolation(VaultError):
    """Operation would break a registry or accounting invariant."""

    code = "invariant_violation"


class AllocationExceedsMax(InvariantViolation):
    code = "allocation_exceeds_max"

    def __init__(self, allocation_bps: int, max_bps: int):
        super().__init__(
            f"Allocation {allocation_bps} bps exceeds per-strategy cap of {max_bps} bps",
            allocation_bps=allocation_bps,
            max_bps=max_bps,
        )


class TotalAllocationInvalid(InvariantViolation):
    code = "total_allocation_invalid"

    def __init__(self, total_bps: int, max_bps: int):
        super().__init__(
            f"Aggregate allocation {total_bps} bps exceeds {max_bps} bps",
            total_bps=total_bps,
            max_bps=max_bps,
        )


class UnsupportedDivestment(InvariantViolation):
    code = "unsupported_divestment"

    def __init__(self, index: int, excess: int):
        super().__init__(
            f"Direct strategy {index} is {excess} over target and cannot be unwound by rebalance",
            index=index,
            excess=excess,
        )


# ==================== Insufficient state ====================

class InsufficientState(VaultError):
    """The pool is not in a state that allows the operation."""

    code = "insufficient_state"


class NoSharesOutstanding(InsufficientState):
    code = "no_shares_outstanding"

    def __init__(self):
        super().__init__("No shares exist to convert")


class StrategyInactive(InsufficientState):
    code = "strategy_inactive"

    def __init__(self, index: int):
        super().__init__(f"Strategy {index} is not active", index=index)


class RequestNotFound(InsufficientState):
    code = "request_not_found"

    def __init__(self, holder: str, request_id: int):
        super().__init__(
            f"No withdrawal request {request_id} for {holder}",
            holder=holder,
            request_id=request_id,
        )


class RequestAlreadyCompleted(InsufficientState):
    code = "request_already_completed"

    def __init__(self, holder: str, request_id: int):
        super().__init__(
            f"Withdrawal request {request_id} for {holder} is already completed",
            holder=holder,
            request_id=request_id,
        )


class InsufficientLiquidity(InsufficientState):
    code = "insufficient_liquidity"

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Idle balance {available} is below the {required} required",
            required=required,
            available=available,
        )


# ==================== External failures ====================

class ExternalFailure(VaultError):
    """A sub-account or asset call failed or returned an inconsistent result."""

    code = "external_failure"

    def __init__(self, message: str, target: Optional[str] = None, **context):
        super().__init__(message, target=target, **context)
        self.target = target


# ==================== Guards ====================

class VaultPaused(VaultError):
    code = "vault_paused"

    def __init__(self):
        super().__init__("Vault is paused")


class VaultNotPaused(VaultError):
    code = "vault_not_paused"

    def __init__(self):
        super().__init__("Vault must be paused for this operation")


class ReentrancyError(VaultError):
    code = "reentrant_call"

    def __init__(self, operation: str, active: str):
        super().__init__(
            f"{operation} called while {active} is in progress",
            operation=operation,
            active=active,
        )
