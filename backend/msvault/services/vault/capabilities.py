"""Capabilities the vault consumes from its collaborators.

The vault never sees concrete sub-account or token classes. It talks to the
underlying asset and to strategies only through these protocols, and it treats
every strategy as untrusted: results are validated before they are used.
"""

from typing import Any, Protocol, runtime_checkable


class AssetToken(Protocol):
    """Fungible asset ledger the pool is denominated in.

    Sender identity is explicit: ``transfer(sender, ...)`` moves the sender's
    own balance, ``transfer_from(spender, source, ...)`` consumes an allowance
    that ``source`` granted to ``spender``.
    """

    symbol: str
    decimals: int

    def balance_of(self, account: str) -> int: ...

    def transfer(self, sender: str, to: str, amount: int) -> bool: ...

    def transfer_from(self, spender: str, source: str, to: str, amount: int) -> bool: ...

    def approve(self, owner: str, spender: str, amount: int) -> bool: ...

    def allowance(self, owner: str, spender: str) -> int: ...


class DirectStrategy(Protocol):
    """Sub-account holding raw asset units on the pool's behalf."""

    address: str

    def balance_of(self, holder: str) -> int: ...


class ConvertibleStrategy(Protocol):
    """Sub-account issuing its own units against deposited assets."""

    address: str

    def deposit(self, assets: int, receiver: str) -> int: ...

    def redeem(self, units: int, receiver: str, owner: str) -> int: ...

    def convert_to_assets(self, units: int) -> int: ...

    def convert_to_shares(self, assets: int) -> int: ...

    def balance_of(self, holder: str) -> int: ...


@runtime_checkable
class Checkpointable(Protocol):
    """Collaborator whose state can be captured and rolled back.

    The vault checkpoints every collaborator that implements this before a
    guarded operation and restores them if the operation fails.
    """

    def checkpoint(self) -> Any: ...

    def restore(self, token: Any) -> None: ...
