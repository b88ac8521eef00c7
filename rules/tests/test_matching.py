"""
Unit Tests for the Game-type Matching Rules

Tests cover:
1. Jodi exact match
2. Hurf structured positions
3. Cross ordered permutations
4. Odd-Even parity
5. Option winning team
6. Strategy table registration
"""

import pytest

from rules import (
    CrossSelection,
    GameType,
    HurfPosition,
    HurfSelection,
    MatchingEngine,
    MatchingRule,
    SelectionError,
    parse_market_result,
    parse_option_result,
)


class TestJodi:
    """Tests for exact two-digit matching."""

    def test_exact_match_wins(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.JODI, "47", "47") is True

    def test_different_digits_lose(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.JODI, "48", "47") is False

    def test_reversed_digits_lose(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.JODI, "74", "47") is False

    def test_single_digit_selection_rejected(self):
        engine = MatchingEngine()
        with pytest.raises(SelectionError):
            engine.normalize_selection(GameType.JODI, "7")


class TestHurf:
    """Tests for the Left / Right / Both position rules."""

    def test_parse_is_structured(self):
        selection = HurfSelection.parse("Both:47")
        assert selection.position == HurfPosition.BOTH
        assert selection.digits == "47"

    def test_left_digit(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.HURF, "Left:4", "47") is True
        assert engine.is_winner(GameType.HURF, "Left:7", "47") is False

    def test_right_digit(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.HURF, "Right:7", "47") is True
        assert engine.is_winner(GameType.HURF, "Right:4", "47") is False

    def test_both_positions_must_match_in_order(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.HURF, "Both:47", "47") is True
        assert engine.is_winner(GameType.HURF, "Both:74", "47") is False
        assert engine.is_winner(GameType.HURF, "Both:48", "47") is False

    def test_position_is_case_insensitive_and_normalized(self):
        engine = MatchingEngine()
        assert engine.normalize_selection(GameType.HURF, "left: 4") == "Left:4"

    @pytest.mark.parametrize("raw", ["Left:44", "Both:4", "Middle:4", "4", "Right:x"])
    def test_malformed_selection_rejected(self, raw):
        with pytest.raises(SelectionError):
            HurfSelection.parse(raw)


class TestCross:
    """Tests for ordered-pair permutations."""

    def test_permutation_set(self):
        selection = CrossSelection.parse("1,2,3")
        assert selection.permutations() == {"12", "13", "21", "23", "31", "32"}

    def test_permutation_wins(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.CROSS, "1,2,3", "31") is True

    def test_repeated_digit_never_wins(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.CROSS, "1,2,3", "11") is False

    def test_four_digits_give_twelve_pairs(self):
        assert len(CrossSelection.parse("1,2,3,4").permutations()) == 12

    @pytest.mark.parametrize("raw", ["1", "1,1", "1,2,3,4,5", "1,a", ""])
    def test_invalid_digit_lists_rejected(self, raw):
        with pytest.raises(SelectionError):
            CrossSelection.parse(raw)


class TestOddEven:
    """Tests for parity matching."""

    def test_odd_result(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.ODD_EVEN, "Odd", "47") is True
        assert engine.is_winner(GameType.ODD_EVEN, "Even", "47") is False

    def test_even_result(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.ODD_EVEN, "Even", "00") is True
        assert engine.is_winner(GameType.ODD_EVEN, "Odd", "00") is False

    def test_selection_normalized(self):
        engine = MatchingEngine()
        assert engine.normalize_selection(GameType.ODD_EVEN, "odd") == "Odd"


class TestOption:
    """Tests for binary team matching."""

    def test_winning_team(self):
        engine = MatchingEngine()
        assert engine.is_winner(GameType.OPTION, "A", "A") is True
        assert engine.is_winner(GameType.OPTION, "B", "A") is False

    def test_unknown_team_rejected(self):
        with pytest.raises(SelectionError):
            MatchingEngine().normalize_selection(GameType.OPTION, "C")


class TestResultsAndRegistry:
    """Tests for result payload parsing and the strategy table."""

    @pytest.mark.parametrize("raw", ["7", "123", "4a", "", None])
    def test_market_result_must_be_two_digits(self, raw):
        with pytest.raises(SelectionError):
            parse_market_result(raw)

    @pytest.mark.parametrize("raw", ["٤٧", "٤" + "7", "４７"])
    def test_market_result_accepts_ascii_digits_only(self, raw):
        with pytest.raises(SelectionError):
            parse_market_result(raw)

    @pytest.mark.parametrize("game_type,raw", [
        (GameType.JODI, "٤٧"),
        (GameType.HURF, "Left:٤"),
        (GameType.HURF, "Both:٤٧"),
        (GameType.CROSS, "١,٢"),
    ])
    def test_selections_accept_ascii_digits_only(self, game_type, raw):
        with pytest.raises(SelectionError):
            MatchingEngine().normalize_selection(game_type, raw)

    def test_option_result_normalized(self):
        assert parse_option_result(" b ") == "B"

    def test_register_replaces_rule(self):
        engine = MatchingEngine()
        engine.register(MatchingRule(GameType.JODI, lambda raw: _Always(), parse_market_result))
        assert engine.is_winner(GameType.JODI, "anything", "12") is True


class _Always:
    def matches(self, result: str) -> bool:
        return True
