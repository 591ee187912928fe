"""Deferred withdrawals for when idle liquidity cannot cover a request.

Each holder owns an append-only list of requests. A request moves
Pending -> Completed exactly once and is never deleted, so request ids stay
stable. The queue only does bookkeeping: burning shares and moving assets is
the vault's job, which calls into here inside its own transaction.

``total_queued_assets`` always equals the sum of ``assets_owed`` over pending
requests.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from msvault.core.errors import (
    InvalidAddress,
    RequestAlreadyCompleted,
    RequestNotFound,
    ZeroAmount,
)


class RequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass
class WithdrawalRequest:
    """A fixed asset claim created when a withdrawal could not be paid out."""
    request_id: int
    holder: str
    receiver: str
    shares_burned: int
    assets_owed: int
    created_at: datetime
    completed: bool = False
    completed_at: Optional[datetime] = None

    @property
    def status(self) -> RequestStatus:
        return RequestStatus.COMPLETED if self.completed else RequestStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "holder": self.holder,
            "receiver": self.receiver,
            "shares_burned": self.shares_burned,
            "assets_owed": self.assets_owed,
            "created_at": self.created_at.isoformat(),
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status.value,
        }


class WithdrawalQueue:
    """Per-holder withdrawal requests plus the pool-wide queued counter."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._requests: Dict[str, List[WithdrawalRequest]] = {}
        self.total_queued_assets = 0

    def enqueue(self, holder: str, shares: int, assets: int, receiver: Optional[str] = None) -> WithdrawalRequest:
        """Record a pending claim. The caller has already burned ``shares``."""
        if not holder:
            raise InvalidAddress("holder")
        if assets <= 0:
            raise ZeroAmount("assets")
        requests = self._requests.setdefault(holder, [])
        request = WithdrawalRequest(
            request_id=len(requests),
            holder=holder,
            receiver=receiver or holder,
            shares_burned=shares,
            assets_owed=assets,
            created_at=self._clock(),
        )
        requests.append(request)
        self.total_queued_assets += assets
        return request

    def get(self, holder: str, request_id: int) -> WithdrawalRequest:
        requests = self._requests.get(holder, [])
        if not isinstance(request_id, int) or request_id < 0 or request_id >= len(requests):
            raise RequestNotFound(holder, request_id)
        return requests[request_id]

    def get_pending(self, holder: str, request_id: int) -> WithdrawalRequest:
        request = self.get(holder, request_id)
        if request.completed:
            raise RequestAlreadyCompleted(holder, request_id)
        return request

    def mark_completed(self, holder: str, request_id: int) -> WithdrawalRequest:
        """Settle a pending request's bookkeeping. Paying out is up to the caller."""
        request = self.get_pending(holder, request_id)
        request.completed = True
        request.completed_at = self._clock()
        self.total_queued_assets -= request.assets_owed
        return request

    def requests_for(self, holder: str) -> List[WithdrawalRequest]:
        """All of a holder's requests, pending and completed, oldest first."""
        return list(self._requests.get(holder, []))

    def pending(self) -> List[WithdrawalRequest]:
        return [
            r for requests in self._requests.values() for r in requests
            if not r.completed
        ]

    def holders(self) -> List[str]:
        return list(self._requests.keys())

    def load(self, requests: List[WithdrawalRequest]) -> None:
        """Replace queue contents, e.g. when restoring from storage."""
        self._requests = {}
        for request in sorted(requests, key=lambda r: (r.holder, r.request_id)):
            self._requests.setdefault(request.holder, []).append(request)
        self.total_queued_assets = sum(r.assets_owed for r in self.pending())

    # ==================== Checkpointing ====================

    def checkpoint(self) -> Tuple[Dict[str, List[WithdrawalRequest]], int]:
        return (
            {h: [replace(r) for r in reqs] for h, reqs in self._requests.items()},
            self.total_queued_assets,
        )

    def restore(self, token: Tuple[Dict[str, List[WithdrawalRequest]], int]) -> None:
        requests, total = token
        self._requests = {h: [replace(r) for r in reqs] for h, reqs in requests.items()}
        self.total_queued_assets = total
