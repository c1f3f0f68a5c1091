from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StrategyDefinition:
    strategy_id: str
    name: str
    description: str
    tags: tuple[str, ...]
    expected_hold: str


STRATEGIES: tuple[StrategyDefinition, ...] = (
    StrategyDefinition(
        strategy_id="SMA_CROSS",
        name="SMA Crossover",
        description="Trend-following based on 20/50 day SMA cross.",
        tags=("trend", "momentum"),
        expected_hold="SWING",
    ),
    StrategyDefinition(
        strategy_id="PULLBACK_TREND",
        name="Pullback in Trend",
        description="Buy pullbacks while long-term trend stays positive.",
        tags=("trend", "meanReversion"),
        expected_hold="SWING",
    ),
    StrategyDefinition(
        strategy_id="MEAN_REVERSION_RSI",
        name="RSI Mean Reversion",
        description="Buy when RSI is oversold and mean reversion is likely.",
        tags=("meanReversion",),
        expected_hold="INTRADAY",
    ),
    StrategyDefinition(
        strategy_id="BREAKOUT_VOLUME",
        name="Breakout Volume",
        description="Breakout with volume expansion.",
        tags=("trend", "momentum", "highVol"),
        expected_hold="SWING",
    ),
)


def get_strategy(strategy_id: str | None) -> StrategyDefinition | None:
    for strategy in STRATEGIES:
        if strategy.strategy_id == strategy_id:
            return strategy
    return None
