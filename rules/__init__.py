"""
Game-type Matching Rules

Provides the structured selection types for each game type and the
strategy table that decides whether a selection wins against a declared
result.
"""

from .matching import (
    GameType,
    MARKET_GAME_TYPES,
    SelectionError,
    HurfPosition,
    JodiSelection,
    HurfSelection,
    CrossSelection,
    OddEvenSelection,
    OptionSelection,
    MatchingRule,
    MatchingEngine,
    parse_market_result,
    parse_option_result,
)

__all__ = [
    "GameType",
    "MARKET_GAME_TYPES",
    "SelectionError",
    "HurfPosition",
    "JodiSelection",
    "HurfSelection",
    "CrossSelection",
    "OddEvenSelection",
    "OptionSelection",
    "MatchingRule",
    "MatchingEngine",
    "parse_market_result",
    "parse_option_result",
]
