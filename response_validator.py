"""Classify fulfillment API responses."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, List, Optional, Tuple

from orders import OrderRequest

ACCEPTED_STATUS = 202
ACCEPTED_ORDER_STATUSES: FrozenSet[str] = frozenset({"NEW", "RECEIVED"})


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    VALIDATION_FAILURE = "validation_failure"
    DUPLICATE_CONFLICT = "duplicate_conflict"
    TRANSPORT_FAILURE = "transport_failure"


@dataclass(frozen=True)
class HttpResult:
    """What came back from one POST; ``status`` is None when no response arrived."""

    status: Optional[int]
    body: str
    latency_ms: float
    error: Optional[str] = None


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    latency_ms: float
    status: Optional[int] = None
    failed_checks: Tuple[str, ...] = ()
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


class ResponseValidator:
    """Classify an order creation response by status code and response contract."""

    def __init__(
        self,
        accepted_status: int = ACCEPTED_STATUS,
        accepted_order_statuses: FrozenSet[str] = ACCEPTED_ORDER_STATUSES,
    ) -> None:
        self.accepted_status = accepted_status
        self.accepted_order_statuses = accepted_order_statuses

    def validate(self, request: OrderRequest, response: HttpResult) -> Outcome:
        latency = response.latency_ms
        status = response.status

        if status is None:
            return Outcome(OutcomeKind.TRANSPORT_FAILURE, latency, None, detail=response.error or "no response")
        if status == 400:
            return Outcome(OutcomeKind.VALIDATION_FAILURE, latency, status, detail="payload rejected")
        if status == 409:
            return Outcome(OutcomeKind.DUPLICATE_CONFLICT, latency, status, detail="duplicate order")
        if status != self.accepted_status:
            return Outcome(OutcomeKind.TRANSPORT_FAILURE, latency, status, detail=f"unexpected status {status}")

        try:
            body = json.loads(response.body)
        except ValueError:
            return Outcome(
                OutcomeKind.TRANSPORT_FAILURE, latency, status, ("body is json",), detail="malformed body"
            )
        if not isinstance(body, dict):
            return Outcome(
                OutcomeKind.TRANSPORT_FAILURE, latency, status, ("body is json",), detail="body is not an object"
            )

        failed = self.failed_checks(request, body)
        if failed:
            return Outcome(OutcomeKind.TRANSPORT_FAILURE, latency, status, failed, detail="contract check failed")
        return Outcome(OutcomeKind.SUCCESS, latency, status)

    def failed_checks(self, request: OrderRequest, body: dict) -> Tuple[str, ...]:
        """Names of the contract checks an accepted response body fails."""

        failed: List[str] = []
        if body.get("order_id") is None:
            failed.append("has order_id")
        order_status = body.get("status")
        if not isinstance(order_status, str) or order_status not in self.accepted_order_statuses:
            failed.append("status accepted")
        items: Any = body.get("items")
        if not isinstance(items, list) or len(items) != len(request.items):
            failed.append("items count matches")
        if "fulfillment_policy" not in body:
            failed.append("has fulfillment_policy")
        if "fulfillment_action" not in body:
            failed.append("has fulfillment_action")
        return tuple(failed)
