import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class GameType(str, Enum):
    JODI = "jodi"
    HURF = "hurf"
    CROSS = "cross"
    ODD_EVEN = "odd_even"
    OPTION = "option"


MARKET_GAME_TYPES = (GameType.JODI, GameType.HURF, GameType.CROSS, GameType.ODD_EVEN)

_RESULT_PATTERN = re.compile(r"^[0-9]{2}$")
_DIGITS = "0123456789"


class SelectionError(ValueError):
    """Raised when a selection or result payload cannot be parsed."""


def parse_market_result(value: str) -> str:
    value = (value or "").strip()
    if not _RESULT_PATTERN.match(value):
        raise SelectionError(f"Market result must be a two-digit string, got {value!r}")
    return value


def parse_option_result(value: str) -> str:
    value = (value or "").strip().upper()
    if value not in ("A", "B"):
        raise SelectionError(f"Winning team must be 'A' or 'B', got {value!r}")
    return value


def _digit(value: str) -> str:
    value = value.strip()
    if len(value) != 1 or value not in _DIGITS:
        raise SelectionError(f"Expected a single digit, got {value!r}")
    return value


@dataclass(frozen=True)
class JodiSelection:
    digits: str

    @classmethod
    def parse(cls, raw: str) -> "JodiSelection":
        try:
            return cls(digits=parse_market_result(raw))
        except SelectionError:
            raise SelectionError(f"Jodi selection must be two digits, got {raw!r}")

    def matches(self, result: str) -> bool:
        return self.digits == result

    def __str__(self) -> str:
        return self.digits


class HurfPosition(str, Enum):
    LEFT = "Left"
    RIGHT = "Right"
    BOTH = "Both"


@dataclass(frozen=True)
class HurfSelection:
    position: HurfPosition
    digits: str

    @classmethod
    def parse(cls, raw: str) -> "HurfSelection":
        head, sep, tail = (raw or "").partition(":")
        if not sep:
            raise SelectionError(f"Hurf selection must look like 'Left:d', 'Right:d' or 'Both:dd', got {raw!r}")
        try:
            position = HurfPosition(head.strip().capitalize())
        except ValueError:
            raise SelectionError(f"Unknown Hurf position {head!r}")

        tail = tail.strip()
        if position == HurfPosition.BOTH:
            if len(tail) != 2:
                raise SelectionError(f"Hurf 'Both' needs exactly two digits, got {tail!r}")
            digits = _digit(tail[0]) + _digit(tail[1])
        else:
            digits = _digit(tail)
        return cls(position=position, digits=digits)

    def matches(self, result: str) -> bool:
        if self.position == HurfPosition.LEFT:
            return result[0] == self.digits
        if self.position == HurfPosition.RIGHT:
            return result[1] == self.digits
        return result[0] == self.digits[0] and result[1] == self.digits[1]

    def __str__(self) -> str:
        return f"{self.position.value}:{self.digits}"


@dataclass(frozen=True)
class CrossSelection:
    digits: tuple[str, ...]

    MIN_DIGITS = 2
    MAX_DIGITS = 4

    @classmethod
    def parse(cls, raw: str) -> "CrossSelection":
        digits = tuple(_digit(part) for part in (raw or "").split(","))
        if not cls.MIN_DIGITS <= len(digits) <= cls.MAX_DIGITS:
            raise SelectionError(
                f"Cross needs {cls.MIN_DIGITS}-{cls.MAX_DIGITS} digits, got {len(digits)}"
            )
        if len(set(digits)) != len(digits):
            raise SelectionError(f"Cross digits must be distinct, got {raw!r}")
        return cls(digits=digits)

    def permutations(self) -> set[str]:
        # ordered pairs, a digit is never paired with itself
        return {
            a + b
            for i, a in enumerate(self.digits)
            for j, b in enumerate(self.digits)
            if i != j
        }

    def matches(self, result: str) -> bool:
        return result in self.permutations()

    def __str__(self) -> str:
        return ",".join(self.digits)


@dataclass(frozen=True)
class OddEvenSelection:
    odd: bool

    @classmethod
    def parse(cls, raw: str) -> "OddEvenSelection":
        value = (raw or "").strip().lower()
        if value not in ("odd", "even"):
            raise SelectionError(f"Odd-Even selection must be 'Odd' or 'Even', got {raw!r}")
        return cls(odd=value == "odd")

    def matches(self, result: str) -> bool:
        return (int(result) % 2 == 1) == self.odd

    def __str__(self) -> str:
        return "Odd" if self.odd else "Even"


@dataclass(frozen=True)
class OptionSelection:
    team: str

    @classmethod
    def parse(cls, raw: str) -> "OptionSelection":
        try:
            return cls(team=parse_option_result(raw))
        except SelectionError:
            raise SelectionError(f"Option selection must be 'A' or 'B', got {raw!r}")

    def matches(self, result: str) -> bool:
        return self.team == result

    def __str__(self) -> str:
        return self.team


@dataclass(frozen=True)
class MatchingRule:
    game_type: GameType
    parse_selection: Callable[[str], object]
    parse_result: Callable[[str], str]

    def normalize(self, selection: str) -> str:
        return str(self.parse_selection(selection))

    def is_winner(self, selection: str, result: str) -> bool:
        parsed = self.parse_selection(selection)
        return parsed.matches(self.parse_result(result))


class MatchingEngine:
    def __init__(self):
        self.rules: dict[GameType, MatchingRule] = {
            GameType.JODI: MatchingRule(GameType.JODI, JodiSelection.parse, parse_market_result),
            GameType.HURF: MatchingRule(GameType.HURF, HurfSelection.parse, parse_market_result),
            GameType.CROSS: MatchingRule(GameType.CROSS, CrossSelection.parse, parse_market_result),
            GameType.ODD_EVEN: MatchingRule(GameType.ODD_EVEN, OddEvenSelection.parse, parse_market_result),
            GameType.OPTION: MatchingRule(GameType.OPTION, OptionSelection.parse, parse_option_result),
        }

    def register(self, rule: MatchingRule) -> None:
        self.rules[rule.game_type] = rule

    def get_rule(self, game_type: GameType) -> Optional[MatchingRule]:
        return self.rules.get(GameType(game_type))

    def _require_rule(self, game_type: GameType) -> MatchingRule:
        rule = self.get_rule(game_type)
        if rule is None:
            raise SelectionError(f"No matching rule registered for {game_type!r}")
        return rule

    def normalize_selection(self, game_type: GameType, selection: str) -> str:
        return self._require_rule(game_type).normalize(selection)

    def is_winner(self, game_type: GameType, selection: str, result: str) -> bool:
        return self._require_rule(game_type).is_winner(selection, result)
