from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from app.billing.reconciler.errors import PaymentEventNotReplayableError, StoreUnavailableError
from app.billing.reconciler.service import replay_failed_payment_event
from app.core.config import get_settings
from app.db.repo.processed_payment_events_repo import ProcessedPaymentEventsRepo
from app.db.session import SessionLocal
from app.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)

router = APIRouter(tags=["internal", "billing"])
logger = structlog.get_logger(__name__)


class PaymentEventLedgerItem(BaseModel):
    event_id: str
    event_kind: str
    status: str
    account_id: UUID | None = None
    failure_reason: str | None = None
    payload: dict[str, object]
    outcome: dict[str, object]
    received_at: datetime
    processed_at: datetime


class PaymentEventLedgerResponse(BaseModel):
    items: list[PaymentEventLedgerItem]


class PaymentEventReplayResponse(BaseModel):
    event_id: str
    status: str
    account_id: UUID | None = None
    failure_reason: str | None = None
    outcome: dict[str, object] = Field(default_factory=dict)


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(
        request,
        trusted_proxies=getattr(settings, "internal_api_trusted_proxies", ""),
    )
    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_billing_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning(
            "internal_billing_auth_failed",
            reason="invalid_credentials",
            client_ip=client_ip,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


@router.get(
    "/internal/billing/payment-events",
    response_model=PaymentEventLedgerResponse,
)
async def list_payment_events(
    request: Request,
    status: Literal["PROCESSING", "PROCESSED", "FAILED"] = Query(default="FAILED"),
    limit: int = Query(default=50, ge=1, le=500),
) -> PaymentEventLedgerResponse:
    _assert_internal_access(request)

    async with SessionLocal.begin() as session:
        rows = await ProcessedPaymentEventsRepo.list_by_status(session, status=status, limit=limit)
        items = [
            PaymentEventLedgerItem(
                event_id=row.event_id,
                event_kind=row.event_kind,
                status=row.status,
                account_id=row.account_id,
                failure_reason=row.failure_reason,
                payload=dict(row.payload or {}),
                outcome=dict(row.outcome or {}),
                received_at=row.received_at,
                processed_at=row.processed_at,
            )
            for row in rows
        ]
    return PaymentEventLedgerResponse(items=items)


@router.post(
    "/internal/billing/payment-events/{event_id}/replay",
    response_model=PaymentEventReplayResponse,
)
async def replay_payment_event(event_id: str, request: Request) -> PaymentEventReplayResponse:
    _assert_internal_access(request)

    try:
        result = await replay_failed_payment_event(event_id)
    except PaymentEventNotReplayableError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_EVENT_NOT_REPLAYABLE"}) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail={"code": "E_STORE_UNAVAILABLE"}) from exc

    logger.info("payment_event_replayed", event_id=event_id, status=result.status)
    return PaymentEventReplayResponse(
        event_id=result.event_id,
        status=result.status,
        account_id=result.account_id,
        failure_reason=result.failure_reason,
        outcome=result.outcome,
    )
