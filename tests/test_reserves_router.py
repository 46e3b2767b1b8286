"""Unit tests for reserve API routes."""

import unittest
from unittest.mock import AsyncMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from basis.api.tracker_api.dependencies import get_reconciler, get_redemption_service
from basis.api.tracker_api.routers.reserves import router
from basis.application.reserve.dtos import ReserveLiabilitiesDTO, TransitionResponseDTO
from basis.domain.errors import NotFoundError, RejectReason
from basis.domain.reserve.entities import ReserveState, Transfer, TransitionStatus

RESERVE_ID = "cd" * 32


class TestReservesRouter(unittest.TestCase):
    """Test cases for reserves router."""

    def setUp(self):
        """Set up test fixtures."""
        self.app = FastAPI()
        self.app.include_router(router, prefix="/api/v1/tracker")

        self.reserve = ReserveState(
            reserve_id_hex=RESERVE_ID,
            owner_public_key_hex="02" + "11" * 32,
            redeemed_digest_hex="00" * 32,
            tracker_id_hex="ab" * 32,
            balance=1_000,
        )
        self.redeem_payload = {
            "proposed_state": self.reserve.model_copy(update={"balance": 700}).model_dump(),
            "request": {
                "receiver_public_key_hex": "03" + "22" * 32,
                "reserve_owner_signature_hex": "00" * 65,
                "tracker_signature_hex": "00" * 65,
                "claimed_cumulative_amount": 300,
                "timestamp": 1,
                "redeemed_tree_proof_hex": "01",
                "tracker_snapshot_proof_hex": "01",
            },
        }

        self.mock_service = AsyncMock()
        self.mock_reconciler = AsyncMock()
        self.app.dependency_overrides[get_redemption_service] = lambda: self.mock_service
        self.app.dependency_overrides[get_reconciler] = lambda: self.mock_reconciler

        self.client = TestClient(self.app)

    def tearDown(self):
        """Clean up after tests."""
        self.app.dependency_overrides.clear()

    def test_get_reserve_success(self):
        self.mock_service.get_reserve.return_value = self.reserve

        response = self.client.get(f"/api/v1/tracker/reserves/{RESERVE_ID}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["balance"], 1_000)

    def test_get_reserve_not_found(self):
        self.mock_service.get_reserve.side_effect = NotFoundError("missing")

        response = self.client.get(f"/api/v1/tracker/reserves/{RESERVE_ID}")

        self.assertEqual(response.status_code, 404)

    def test_redeem_committed(self):
        """A committed redemption returns 201 with the transfer."""
        self.mock_service.redeem.return_value = TransitionResponseDTO(
            status=TransitionStatus.COMMITTED,
            reserve=self.reserve.model_copy(update={"balance": 700}),
            transfer=Transfer(receiver_public_key_hex="03" + "22" * 32, amount=300),
            cumulative_redeemed=300,
        )

        response = self.client.post(
            f"/api/v1/tracker/reserves/{RESERVE_ID}/redemptions", json=self.redeem_payload
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "committed")
        self.assertEqual(body["transfer"]["amount"], 300)
        self.mock_service.redeem.assert_called_once()

    def test_redeem_rejected_is_conflict(self):
        """A rejected transition maps to 409 with the reason."""
        self.mock_service.redeem.return_value = TransitionResponseDTO(
            status=TransitionStatus.REJECTED,
            reserve=self.reserve,
            reason=RejectReason.INSUFFICIENT_HEADROOM,
            detail="Redeem amount 300 exceeds headroom 0",
        )

        response = self.client.post(
            f"/api/v1/tracker/reserves/{RESERVE_ID}/redemptions", json=self.redeem_payload
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["reason"], "insufficient_headroom")

    def test_redeem_unknown_reserve(self):
        self.mock_service.redeem.side_effect = NotFoundError("missing")

        response = self.client.post(
            f"/api/v1/tracker/reserves/{RESERVE_ID}/redemptions", json=self.redeem_payload
        )

        self.assertEqual(response.status_code, 404)

    def test_redeem_unexpected_error(self):
        self.mock_service.redeem.side_effect = RuntimeError("store down")

        response = self.client.post(
            f"/api/v1/tracker/reserves/{RESERVE_ID}/redemptions", json=self.redeem_payload
        )

        self.assertEqual(response.status_code, 500)
        self.assertIn("store down", response.json()["detail"])

    def test_top_up_committed(self):
        topped = self.reserve.model_copy(update={"balance": 2_000})
        self.mock_service.top_up.return_value = TransitionResponseDTO(
            status=TransitionStatus.COMMITTED, reserve=topped
        )

        response = self.client.post(
            f"/api/v1/tracker/reserves/{RESERVE_ID}/top-ups",
            json={"proposed_state": topped.model_dump()},
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["reserve"]["balance"], 2_000)

    def test_open_reserve_duplicate(self):
        self.mock_service.open_reserve.side_effect = ValueError("already exists")

        response = self.client.post(
            "/api/v1/tracker/reserves",
            json={
                "reserve_id_hex": RESERVE_ID,
                "owner_public_key_hex": "02" + "11" * 32,
                "tracker_id_hex": "ab" * 32,
                "balance": 1_000,
            },
        )

        self.assertEqual(response.status_code, 400)

    def test_liabilities(self):
        self.mock_reconciler.get_liabilities.return_value = ReserveLiabilitiesDTO(
            reserve_id_hex=RESERVE_ID,
            balance=1_000,
            liabilities={"11" * 32: 1_200},
            total_liabilities=1_200,
            solvent=False,
        )

        response = self.client.get(f"/api/v1/tracker/reserves/{RESERVE_ID}/liabilities")

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["solvent"])

    def test_liabilities_unknown_reserve(self):
        self.mock_reconciler.get_liabilities.side_effect = NotFoundError("unseen")

        response = self.client.get(f"/api/v1/tracker/reserves/{RESERVE_ID}/liabilities")

        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
