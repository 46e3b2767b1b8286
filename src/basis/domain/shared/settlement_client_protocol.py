"""Protocol interface for settlement-layer clients.

The settlement layer delivers globally ordered blocks and lets the tracker
anchor its ledger digest. The reconciler and the tracker depend only on this
protocol, so tests can drive them with an in-memory chain.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Type
from types import TracebackType


class SettlementClientProtocol(Protocol):
    async def fetch_height(self) -> int:
        """Height of the latest settled block.

        Raises:
            SettlementFetchError: On any transport or decoding failure.
        """
        ...

    async def fetch_block(self, height: int) -> Optional[dict[str, Any]]:
        """Raw block at *height*, or None if it is not settled yet.

        The payload has the shape::

            {"height": int, "block_id": str, "timestamp_ms": int,
             "transactions": [{"tx_id": str,
                               "inputs": [{"record_id": str}],
                               "outputs": [{"record_id": str, "value": int,
                                            "script_hash": str,
                                            "tokens": [{"token_id": str, "amount": int}],
                                            "registers": {"R4": str, ...}}]}]}

        Raises:
            SettlementFetchError: On any transport failure.
        """
        ...

    async def publish_digest(self, tracker_id_hex: str, digest_hex: str) -> str:
        """Submit a tracker-record update carrying *digest_hex*; returns a submission id."""
        ...

    async def aclose(self) -> None: ...

    async def __aenter__(self: "SettlementClientProtocol") -> "SettlementClientProtocol": ...

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None: ...

