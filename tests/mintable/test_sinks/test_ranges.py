# ruff: noqa: S101
"""Tests for A1 notation helpers."""

import pytest

from mintable.sinks.ranges import Range, column_letter, translate_range


class TestColumnLetter:
    """Tests for column_letter."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("index", "letters"),
        [
            (0, "A"),
            (1, "B"),
            (25, "Z"),
            (26, "AA"),
            (27, "AB"),
            (51, "AZ"),
            (52, "BA"),
            (701, "ZZ"),
            (702, "AAA"),
        ],
    )
    def test_bijective_base_26(self, index: int, letters: str) -> None:
        assert column_letter(index) == letters

    @pytest.mark.unit
    def test_rejects_negative_index(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            column_letter(-1)


class TestTranslateRange:
    """Tests for translate_range."""

    @pytest.mark.unit
    def test_whole_sheet(self) -> None:
        assert translate_range(Range("Balances")) == "Balances"

    @pytest.mark.unit
    def test_single_cell(self) -> None:
        assert translate_range(Range("History", "A1")) == "History!A1"

    @pytest.mark.unit
    def test_full_range(self) -> None:
        assert translate_range(Range("2024.01", "A1", "C3")) == "2024.01!A1:C3"

    @pytest.mark.unit
    def test_end_without_start_is_ignored(self) -> None:
        assert translate_range(Range("Balances", end="C3")) == "Balances"
