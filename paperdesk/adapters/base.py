from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date


@dataclass
class Quote:
    symbol: str
    price: float
    change: float = 0.0
    change_pct: float = 0.0
    source: str = ""


@dataclass
class OHLCV:
    t: int
    o: float
    h: float
    l: float
    c: float
    v: float = 0.0


class MarketDataAdapter(ABC):
    name = "base"

    @abstractmethod
    async def get_quote(self, symbol: str) -> Quote | None: ...

    @abstractmethod
    async def get_history(self, symbol: str, start: date, end: date) -> list[OHLCV]:
        """Daily bars between ``start`` and ``end``, oldest first. Empty when unavailable."""
        ...

    async def close(self) -> None:
        return None
