"""Checked calls into untrusted collaborators."""

from typing import Any, Callable

from msvault.core.errors import ExternalFailure, VaultError


def checked_amount(value: Any, target: str, operation: str) -> int:
    """Validate that an external call returned a usable asset/unit amount."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ExternalFailure(
            f"{target}.{operation} returned non-integer {value!r}",
            target=target,
            operation=operation,
        )
    if value < 0:
        raise ExternalFailure(
            f"{target}.{operation} returned negative amount {value}",
            target=target,
            operation=operation,
        )
    return value


def call_external(target: str, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
    """Invoke a collaborator, converting any failure into ExternalFailure.

    Vault errors raised from inside the call (a reentrant call rejected by the
    guard, for example) propagate unchanged.
    """
    try:
        return fn(*args, **kwargs)
    except VaultError:
        raise
    except Exception as e:
        raise ExternalFailure(
            f"{target}.{operation} failed: {e}",
            target=target,
            operation=operation,
        ) from e


def call_for_amount(target: str, operation: str, fn: Callable[..., Any], *args, **kwargs) -> int:
    return checked_amount(call_external(target, operation, fn, *args, **kwargs), target, operation)
