from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from app.billing.identity.errors import AccountNotFoundError
from app.billing.promo.errors import (
    PromoAlreadyRedeemedError,
    PromoDepletedError,
    PromoError,
    PromoExpiredError,
    PromoInvalidError,
    PromoNotFoundError,
)
from app.billing.promo.service import PromoService
from app.billing.promo.types import Modification, PromoContext
from app.billing.rate_limit.errors import RateLimitedError
from app.billing.rate_limit.limiter import get_rate_limiter
from app.core.config import get_settings
from app.db.session import SessionLocal
from app.services.internal_auth import extract_client_ip

router = APIRouter(tags=["promo"])
logger = structlog.get_logger(__name__)


class PromoRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)
    order_amount: int = Field(default=0, ge=0)
    account_id: UUID | None = None
    fingerprint: str | None = Field(default=None, min_length=1, max_length=128)


class PromoApplyRequest(PromoRequest):
    intent: Literal["apply"] = "apply"


class ModificationModel(BaseModel):
    type: str
    months: int | None = None
    percent_off: int | None = None
    amount_off: int | None = None


class PromoValidateResponse(BaseModel):
    valid: bool
    modification: ModificationModel | None = None
    reason: str | None = None


class SubscriptionStateModel(BaseModel):
    subscription_status: str
    subscription_end_date: datetime | None = None


class PromoApplyResponse(BaseModel):
    applied: bool
    pending: bool
    redemption_id: UUID
    modification: ModificationModel
    resulting_subscription_state: SubscriptionStateModel | None = None


def _as_model(modification: Modification) -> ModificationModel:
    return ModificationModel(
        type=modification.type.value,
        months=modification.months,
        percent_off=modification.percent_off,
        amount_off=modification.amount_off,
    )


def _reason_for(exc: PromoError) -> str:
    if isinstance(exc, PromoExpiredError):
        return "expired"
    if isinstance(exc, PromoDepletedError):
        return "depleted"
    if isinstance(exc, PromoNotFoundError):
        return "not_found"
    if isinstance(exc, PromoAlreadyRedeemedError):
        return "already_redeemed"
    return "invalid"


def _rate_limit_key(payload: PromoRequest, request: Request, *, action: str) -> str:
    if payload.account_id is not None:
        identity = f"account:{payload.account_id}"
    elif payload.fingerprint:
        identity = f"fingerprint:{payload.fingerprint}"
    else:
        client_ip = extract_client_ip(
            request,
            trusted_proxies=get_settings().internal_api_trusted_proxies,
        )
        identity = f"ip:{client_ip or 'unknown'}"
    return f"promo:{action}:{identity}"


async def _enforce_rate_limit(
    payload: PromoRequest,
    request: Request,
    *,
    action: str,
    limit: int,
    now_utc: datetime,
) -> None:
    settings = get_settings()
    key = _rate_limit_key(payload, request, action=action)
    try:
        await get_rate_limiter().enforce(
            key,
            limit=limit,
            window=timedelta(seconds=settings.promo_rate_limit_window_seconds),
            now_utc=now_utc,
        )
    except RateLimitedError as exc:
        retry_after = max(1, math.ceil((exc.decision.reset_at - now_utc).total_seconds()))
        logger.info("promo_rate_limited", key=key, action=action, retry_after=retry_after)
        raise HTTPException(
            status_code=429,
            detail={"code": "E_RATE_LIMITED"},
            headers={"Retry-After": str(retry_after)},
        ) from exc


@router.post("/promo/validate", response_model=PromoValidateResponse)
async def validate_promo(*, payload: PromoRequest, request: Request) -> PromoValidateResponse:
    now_utc = datetime.now(timezone.utc)
    await _enforce_rate_limit(
        payload,
        request,
        action="validate",
        limit=get_settings().promo_validate_rate_limit,
        now_utc=now_utc,
    )

    try:
        async with SessionLocal.begin() as session:
            eligibility = await PromoService.evaluate(
                session,
                code=payload.code,
                context=PromoContext(
                    order_amount=payload.order_amount,
                    account_id=payload.account_id,
                    fingerprint=payload.fingerprint,
                ),
                now_utc=now_utc,
            )
    except PromoError as exc:
        return PromoValidateResponse(valid=False, reason=_reason_for(exc))

    return PromoValidateResponse(valid=True, modification=_as_model(eligibility.modification))


@router.post("/promo/apply", response_model=PromoApplyResponse)
async def apply_promo(*, payload: PromoApplyRequest, request: Request) -> PromoApplyResponse:
    now_utc = datetime.now(timezone.utc)
    await _enforce_rate_limit(
        payload,
        request,
        action="apply",
        limit=get_settings().promo_apply_rate_limit,
        now_utc=now_utc,
    )

    try:
        async with SessionLocal.begin() as session:
            result = await PromoService.apply(
                session,
                code=payload.code,
                context=PromoContext(
                    order_amount=payload.order_amount,
                    account_id=payload.account_id,
                    fingerprint=payload.fingerprint,
                ),
                now_utc=now_utc,
                grant_subscription=True,
            )
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_ACCOUNT_NOT_FOUND"}) from exc
    except PromoExpiredError as exc:
        raise HTTPException(status_code=410, detail={"code": "E_PROMO_EXPIRED"}) from exc
    except PromoDepletedError as exc:
        raise HTTPException(status_code=410, detail={"code": "E_PROMO_DEPLETED"}) from exc
    except PromoNotFoundError as exc:
        raise HTTPException(status_code=404, detail={"code": "E_PROMO_NOT_FOUND"}) from exc
    except PromoAlreadyRedeemedError as exc:
        raise HTTPException(status_code=409, detail={"code": "E_PROMO_ALREADY_REDEEMED"}) from exc
    except PromoInvalidError as exc:
        raise HTTPException(status_code=422, detail={"code": "E_PROMO_INVALID"}) from exc

    subscription_state = None
    if result.subscription_status is not None:
        subscription_state = SubscriptionStateModel(
            subscription_status=result.subscription_status,
            subscription_end_date=result.subscription_end_date,
        )
    return PromoApplyResponse(
        applied=result.applied,
        pending=result.pending,
        redemption_id=result.redemption_id,
        modification=_as_model(result.modification),
        resulting_subscription_state=subscription_state,
    )
