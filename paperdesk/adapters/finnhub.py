from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional

import httpx

from paperdesk.adapters.base import MarketDataAdapter, OHLCV, Quote

logger = logging.getLogger(__name__)


class FinnhubAdapter(MarketDataAdapter):
    BASE_URL = "https://finnhub.io/api/v1"
    name = "finnhub"

    def __init__(self, api_key: str, timeout: float = 8.0, transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key
        self.timeout = timeout
        self.client: Optional[httpx.AsyncClient] = None
        self.disabled = False
        self._transport = transport

    async def initialize(self):
        if self.client:
            return

        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            trust_env=False,
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self.disabled or not self.api_key:
            return {}

        if not self.client:
            await self.initialize()

        p = dict(params or {})
        p["token"] = self.api_key

        try:
            response = await self.client.get(f"{self.BASE_URL}{endpoint}", params=p)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (403, 429):
                logger.warning("event=finnhub_limited status=%s", e.response.status_code)
                if e.response.status_code == 403:
                    self.disabled = True
            return {}
        except httpx.HTTPError as e:
            logger.error("event=finnhub_request_error endpoint=%s error=%s", endpoint, e)
            return {}

    async def get_quote(self, symbol: str) -> Quote | None:
        sym = symbol.strip().upper()
        data = await self._get("/quote", {"symbol": sym})
        price = float((data or {}).get("c") or 0.0)
        if price <= 0:
            return None
        return Quote(
            symbol=sym,
            price=price,
            change=float(data.get("d") or 0.0),
            change_pct=float(data.get("dp") or 0.0),
            source=self.name,
        )

    async def get_history(self, symbol: str, start: date, end: date) -> list[OHLCV]:
        frm = int(datetime.combine(start, time.min, tzinfo=timezone.utc).timestamp())
        to = int(datetime.combine(end, time.max, tzinfo=timezone.utc).timestamp())
        data = await self._get(
            "/stock/candle",
            {"symbol": symbol.strip().upper(), "resolution": "D", "from": frm, "to": to},
        )
        if not isinstance(data, dict) or data.get("s") != "ok":
            return []
        rows = zip(data.get("t", []), data.get("o", []), data.get("h", []), data.get("l", []), data.get("c", []), data.get("v", []))
        return [OHLCV(t=int(t), o=float(o), h=float(h), l=float(l), c=float(c), v=float(v)) for t, o, h, l, c, v in rows]
