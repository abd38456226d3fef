"""
redemption.py - Asynchronous redemption request table

One table per market, keyed by (controller, request_id). Request ids increase
monotonically per market and are never reused.

Lifecycle of a request:

    PENDING --(now >= claimable_at)--> CLAIMABLE --(redeem all)--> removed
       |                                   |
       +------------(cancel)---------------+--> CANCELED --(claim cancel)--> removed

A partial redeem reduces the request in place. A request never lingers with
zero shares: reducing it to zero removes it.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .core import (
    ZERO, TrancheType,
    InvalidRequestId, RedemptionRequestCanceled, RedemptionRequestNotCanceled,
    is_zero,
)

logger = logging.getLogger(__name__)

RequestKey = Tuple[str, int]


@dataclass(frozen=True, slots=True)
class RedemptionRequest:
    """
    An outstanding redemption request.

    Attributes:
        request_id: Per-market monotonic id.
        controller: Wallet that controls the request.
        tranche: Tranche whose shares are being redeemed.
        shares: Shares still outstanding (held in escrow).
        value_at_request: NAV of the outstanding shares at request time.
        requested_at: When the request was made.
        claimable_at: Earliest time the shares can be redeemed.
        canceled: Set by cancel; the shares can then only be reclaimed.
    """
    request_id: int
    controller: str
    tranche: TrancheType
    shares: Decimal
    value_at_request: Decimal
    requested_at: datetime
    claimable_at: datetime
    canceled: bool = False

    @property
    def key(self) -> RequestKey:
        return (self.controller, self.request_id)

    @property
    def value_per_share(self) -> Decimal:
        return self.value_at_request / self.shares if self.shares > 0 else ZERO

    def is_mature(self, now: datetime) -> bool:
        """True once the delay has elapsed and the request is not canceled."""
        return not self.canceled and now >= self.claimable_at

    def reduced_by(self, shares: Decimal) -> Optional[RedemptionRequest]:
        """The request after redeeming `shares`, or None once nothing is left."""
        remaining = self.shares - shares
        if remaining <= 0 or is_zero(remaining):
            return None
        return replace(
            self,
            shares=remaining,
            value_at_request=self.value_at_request * remaining / self.shares,
        )


class RedemptionQueue:
    """
    The request table of one market.

    Example:
        queue = RedemptionQueue("senior-1")
        req = queue.create("alice", TrancheType.JUNIOR, Decimal("100"),
                           Decimal("105"), now, timedelta(days=7))
        queue.cancel("alice", req.request_id)
        queue.claim_cancel("alice", req.request_id)
    """

    def __init__(self, market_id: str):
        self.market_id = market_id
        self._requests: Dict[RequestKey, RedemptionRequest] = {}
        self._next_request_id = 1

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, key: RequestKey) -> bool:
        return key in self._requests

    def create(
        self,
        controller: str,
        tranche: TrancheType,
        shares: Decimal,
        value_at_request: Decimal,
        now: datetime,
        delay: timedelta,
    ) -> RedemptionRequest:
        request = RedemptionRequest(
            request_id=self._next_request_id,
            controller=controller,
            tranche=tranche,
            shares=shares,
            value_at_request=value_at_request,
            requested_at=now,
            claimable_at=now + delay,
        )
        self._next_request_id += 1
        self._requests[request.key] = request
        logger.info("redemption requested", extra={
            "market_id": self.market_id,
            "request_id": request.request_id,
            "controller": controller,
            "shares": shares,
            "claimable_at": request.claimable_at,
        })
        return request

    def get(self, controller: str, request_id: int) -> RedemptionRequest:
        """
        Raises:
            InvalidRequestId: if no such request exists for the controller
        """
        request = self._requests.get((controller, request_id))
        if request is None:
            raise InvalidRequestId(
                f"No redemption request {request_id} for {controller} in {self.market_id}"
            )
        return request

    def find(self, controller: str, request_id: int) -> Optional[RedemptionRequest]:
        return self._requests.get((controller, request_id))

    def requests_of(self, controller: str) -> List[RedemptionRequest]:
        return sorted(
            (r for (c, _), r in self._requests.items() if c == controller),
            key=lambda r: r.request_id,
        )

    def outstanding_shares(self, tranche: TrancheType) -> Decimal:
        return sum(
            (r.shares for r in self._requests.values() if r.tranche is tranche),
            ZERO,
        )

    def reduce(self, request: RedemptionRequest, shares: Decimal) -> Optional[RedemptionRequest]:
        """Redeem `shares` out of a request; removes it once fully redeemed."""
        remaining = request.reduced_by(shares)
        if remaining is None:
            del self._requests[request.key]
        else:
            self._requests[request.key] = remaining
        return remaining

    def cancel(self, controller: str, request_id: int) -> RedemptionRequest:
        """
        Raises:
            InvalidRequestId: if the request does not exist
            RedemptionRequestCanceled: if it is already canceled
        """
        request = self.get(controller, request_id)
        if request.canceled:
            raise RedemptionRequestCanceled(
                f"Redemption request {request_id} of {controller} is already canceled"
            )
        canceled = replace(request, canceled=True)
        self._requests[request.key] = canceled
        logger.info("redemption canceled", extra={
            "market_id": self.market_id, "request_id": request_id, "controller": controller,
        })
        return canceled

    def claim_cancel(self, controller: str, request_id: int) -> RedemptionRequest:
        """
        Remove a canceled request and return it.

        Raises:
            InvalidRequestId: if the request does not exist
            RedemptionRequestNotCanceled: if it was never canceled
        """
        request = self.get(controller, request_id)
        if not request.canceled:
            raise RedemptionRequestNotCanceled(
                f"Redemption request {request_id} of {controller} is not canceled"
            )
        del self._requests[request.key]
        return request

    def snapshot(self) -> Tuple[Dict[RequestKey, RedemptionRequest], int]:
        return dict(self._requests), self._next_request_id

    def restore(self, snap: Tuple[Dict[RequestKey, RedemptionRequest], int]) -> None:
        requests, next_id = snap
        self._requests = dict(requests)
        self._next_request_id = next_id
