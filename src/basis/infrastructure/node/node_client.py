"""Settlement node client over HTTP."""

from __future__ import annotations

import logging
from typing import Any, Optional, Type
from types import TracebackType

import httpx

from ...domain.errors import SettlementFetchError
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)


class NodeClient:
    """Talks to a settlement node's REST API.

    Endpoints used:

    - ``GET /info`` → ``{"fullHeight": int}``
    - ``GET /blocks/at/{height}`` → list of block ids at that height
    - ``GET /blocks/{block_id}`` → block with its transactions
    - ``POST /tracker/digests`` → ``{"submission_id": str}``

    Every transport or HTTP failure surfaces as ``SettlementFetchError`` so the
    reconciler can keep its watermark and retry on the next cycle.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"api_key": api_key} if api_key else None
        self._http = AsyncHttpClient(
            base_url, timeout=timeout, headers=headers, transport=transport
        )

    async def _get_json(self, path: str) -> Any:
        try:
            return await self._http.get_json(path)
        except (httpx.HTTPError, ValueError) as e:
            raise SettlementFetchError(f"GET {path} failed: {e}") from e

    async def fetch_height(self) -> int:
        info = await self._get_json("/info")
        try:
            return int(info["fullHeight"])
        except (KeyError, TypeError, ValueError) as e:
            raise SettlementFetchError(f"Unexpected /info payload: {e}") from e

    async def fetch_block(self, height: int) -> Optional[dict[str, Any]]:
        block_ids = await self._get_json(f"/blocks/at/{height}")
        if not block_ids:
            return None
        block = await self._get_json(f"/blocks/{block_ids[0]}")
        if not isinstance(block, dict):
            raise SettlementFetchError(f"Unexpected block payload at height {height}")
        return block

    async def publish_digest(self, tracker_id_hex: str, digest_hex: str) -> str:
        try:
            resp = await self._http.post(
                "/tracker/digests",
                json={"tracker_id": tracker_id_hex, "digest": digest_hex},
            )
            submission_id = str(resp.json()["submission_id"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise SettlementFetchError(f"Digest publication failed: {e}") from e
        logger.info("Published ledger digest %s as %s", digest_hex, submission_id)
        return submission_id

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "NodeClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()
