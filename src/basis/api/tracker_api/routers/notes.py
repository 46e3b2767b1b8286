"""Debt ledger API routes (Tracker)."""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from prometheus_client import Counter, Histogram

from ....application.tracker.dtos import (
    LedgerDigestDTO,
    LedgerProofDTO,
    NoteReceiptDTO,
    PublishDigestResponseDTO,
    SubmitNoteDTO,
)
from ....application.tracker.use_cases.ledger import TrackerLedgerService
from ....domain.errors import (
    BasisError,
    NonMonotonicUpdateError,
    ProofMismatchError,
    SettlementFetchError,
)
from ..dependencies import get_ledger_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ledger"])


NOTE_DURATION_BUCKETS = (
    [round(0.5 * i, 1) for i in range(1, 21)]  # 0.5ms..10ms
    + [float(x) for x in range(15, 55, 5)]  # 15..50ms
    + [float("inf")]
)

note_requests_total = Counter(
    "tracker_note_requests_total",
    "Total debt note submissions processed",
    ["status"],
)

note_request_duration_milliseconds = Histogram(
    "tracker_note_request_duration_milliseconds",
    "Wall time to verify, co-sign and record a debt note (ms)",
    ["status"],
    buckets=NOTE_DURATION_BUCKETS,
)


def _observe(label: str, start_time: float) -> None:
    note_requests_total.labels(status=label).inc()
    elapsed = (time.perf_counter() - start_time) * 1000
    note_request_duration_milliseconds.labels(status=label).observe(elapsed)


@router.post(
    "/notes",
    response_model=NoteReceiptDTO,
    status_code=status.HTTP_201_CREATED,
)
async def submit_note(
    payload: SubmitNoteDTO,
    service: TrackerLedgerService = Depends(get_ledger_service),
) -> NoteReceiptDTO:
    """Record a debtor-signed cumulative debt update and return the co-signature."""
    start_time = time.perf_counter()
    try:
        receipt = await service.submit_note(payload)
        _observe("success", start_time)
        return receipt
    except NonMonotonicUpdateError as e:
        _observe("conflict", start_time)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except (BasisError, ValueError) as e:
        _observe("client_error", start_time)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        _observe("server_error", start_time)
        logger.exception("Failed to record note")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to record note: {str(e)}",
        )


@router.get(
    "/notes/{pair_key_hex}/proof",
    response_model=LedgerProofDTO,
    status_code=status.HTTP_200_OK,
)
async def get_note_proof(
    pair_key_hex: str = Path(..., description="Directional pair key (hex)"),
    digest: Optional[str] = Query(None, description="Ledger digest to prove against"),
    service: TrackerLedgerService = Depends(get_ledger_service),
) -> LedgerProofDTO:
    try:
        return await service.get_proof(pair_key_hex, digest)
    except ProofMismatchError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (BasisError, ValueError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get(
    "/digest",
    response_model=LedgerDigestDTO,
    status_code=status.HTTP_200_OK,
)
async def get_digest(
    service: TrackerLedgerService = Depends(get_ledger_service),
) -> LedgerDigestDTO:
    return await service.get_digest()


@router.post(
    "/digest/publish",
    response_model=PublishDigestResponseDTO,
    status_code=status.HTTP_202_ACCEPTED,
)
async def publish_digest(
    service: TrackerLedgerService = Depends(get_ledger_service),
) -> PublishDigestResponseDTO:
    try:
        return await service.publish_digest()
    except SettlementFetchError as e:
        logger.warning("Digest publication failed: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
