"""Reserve API routes (Tracker): redemptions, top-ups and liabilities."""

from __future__ import annotations

import logging
import time
from typing import Awaitable

from fastapi import APIRouter, Depends, HTTPException, Path, status
from prometheus_client import Counter, Gauge, Histogram

from ....application.reconciler.use_cases.reconciler import TrackerReconciler
from ....application.reserve.dtos import (
    OpenReserveDTO,
    RedeemDTO,
    ReserveLiabilitiesDTO,
    TopUpDTO,
    TransitionResponseDTO,
)
from ....application.reserve.use_cases.redemption import RedemptionService
from ....domain.errors import BasisError, NotFoundError
from ....domain.reserve.entities import ReserveState, TransitionStatus
from ..dependencies import get_reconciler, get_redemption_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reserves", tags=["reserves"])


REDEMPTION_DURATION_BUCKETS = (
    [float(x) for x in range(1, 21)]  # 1..20ms
    + [float(x) for x in range(25, 105, 5)]  # 25..100ms
    + [float("inf")]
)

redemption_requests_total = Counter(
    "tracker_redemption_requests_total",
    "Total reserve transitions processed",
    ["kind", "status"],
)

redemption_request_duration_milliseconds = Histogram(
    "tracker_redemption_request_duration_milliseconds",
    "Wall time to verify and commit a reserve transition (ms)",
    ["kind", "status"],
    buckets=REDEMPTION_DURATION_BUCKETS,
)

redemption_requests_inprogress = Gauge(
    "tracker_redemption_requests_inprogress",
    "Number of reserve transitions currently being processed",
)


def _observe(kind: str, label: str, start_time: float) -> None:
    redemption_requests_total.labels(kind=kind, status=label).inc()
    elapsed = (time.perf_counter() - start_time) * 1000
    redemption_request_duration_milliseconds.labels(kind=kind, status=label).observe(
        elapsed
    )


def _rejected(result: TransitionResponseDTO) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "reason": result.reason.value if result.reason else None,
            "detail": result.detail,
            "reserve": result.reserve.model_dump(),
        },
    )


@router.post(
    "",
    response_model=ReserveState,
    status_code=status.HTTP_201_CREATED,
)
async def open_reserve(
    payload: OpenReserveDTO,
    service: RedemptionService = Depends(get_redemption_service),
) -> ReserveState:
    try:
        return await service.open_reserve(payload)
    except (BasisError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get(
    "/{reserve_id_hex}",
    response_model=ReserveState,
    status_code=status.HTTP_200_OK,
)
async def get_reserve(
    reserve_id_hex: str = Path(..., description="Reserve identifier (hex)"),
    service: RedemptionService = Depends(get_redemption_service),
) -> ReserveState:
    try:
        return await service.get_reserve(reserve_id_hex)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


async def _run_transition(
    kind: str, call: Awaitable[TransitionResponseDTO]
) -> TransitionResponseDTO:
    start_time = time.perf_counter()
    redemption_requests_inprogress.inc()
    try:
        result = await call
        if result.status != TransitionStatus.COMMITTED:
            _observe(kind, "rejected", start_time)
            raise _rejected(result)
        _observe(kind, "success", start_time)
        return result
    except NotFoundError as e:
        _observe(kind, "client_error", start_time)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except HTTPException:
        raise
    except (BasisError, ValueError) as e:
        _observe(kind, "client_error", start_time)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        _observe(kind, "server_error", start_time)
        logger.exception("Failed to process %s", kind)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process {kind}: {str(e)}",
        )
    finally:
        redemption_requests_inprogress.dec()


@router.post(
    "/{reserve_id_hex}/redemptions",
    response_model=TransitionResponseDTO,
    status_code=status.HTTP_201_CREATED,
)
async def redeem(
    payload: RedeemDTO,
    reserve_id_hex: str = Path(..., description="Reserve identifier (hex)"),
    service: RedemptionService = Depends(get_redemption_service),
) -> TransitionResponseDTO:
    """Verify a redemption against the stored reserve and commit it atomically."""
    return await _run_transition("redemption", service.redeem(reserve_id_hex, payload))


@router.post(
    "/{reserve_id_hex}/top-ups",
    response_model=TransitionResponseDTO,
    status_code=status.HTTP_201_CREATED,
)
async def top_up(
    payload: TopUpDTO,
    reserve_id_hex: str = Path(..., description="Reserve identifier (hex)"),
    service: RedemptionService = Depends(get_redemption_service),
) -> TransitionResponseDTO:
    return await _run_transition("top_up", service.top_up(reserve_id_hex, payload))


@router.get(
    "/{reserve_id_hex}/liabilities",
    response_model=ReserveLiabilitiesDTO,
    status_code=status.HTTP_200_OK,
)
async def get_liabilities(
    reserve_id_hex: str = Path(..., description="Reserve identifier (hex)"),
    reconciler: TrackerReconciler = Depends(get_reconciler),
) -> ReserveLiabilitiesDTO:
    """Outstanding notes backed by the reserve, as last reconciled."""
    try:
        return await reconciler.get_liabilities(reserve_id_hex)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
