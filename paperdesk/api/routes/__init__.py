from __future__ import annotations

from paperdesk.api.routes import execution, paper, robo, trade_plan

__all__ = [
    "paper",
    "trade_plan",
    "execution",
    "robo",
]
