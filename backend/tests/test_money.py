import pytest

from printdesk.money import format_currency, format_weight, kg_to_grams, parse_amount, round_half_up_div
from printdesk.validation import ValidationError


class TestRounding:

    @pytest.mark.parametrize("num,den,expected", [
        (5, 2, 3),
        (4, 2, 2),
        (7, 3, 2),
        (-5, 2, -3),
        (125_625, 1_000, 126),
    ])
    def test_half_up(self, num, den, expected):
        assert round_half_up_div(num, den) == expected

    def test_zero_denominator(self):
        with pytest.raises(ValueError):
            round_half_up_div(1, 0)


class TestFormatting:

    def test_currency(self):
        assert format_currency(123_450) == "Rs. 1,234.50"
        assert format_currency(5) == "Rs. 0.05"
        assert format_currency(None) == "Rs. 0.00"
        assert format_currency(-2_000) == "-Rs. 20.00"

    def test_weight(self):
        assert format_weight(2_500) == "2.50 kg"
        assert format_weight(0) == "0.00 kg"


class TestParsing:

    @pytest.mark.parametrize("raw,cents", [
        ("1,234.50", 123_450),
        ("Rs. 20", 2_000),
        ("LKR 99.9", 9_990),
        (75, 7_500),
        ("0.01", 1),
    ])
    def test_parse_amount(self, raw, cents):
        assert parse_amount(raw) == cents

    @pytest.mark.parametrize("raw", [None, "", "abc", "1.234", True, "NaN"])
    def test_parse_amount_rejects(self, raw):
        with pytest.raises(ValidationError):
            parse_amount(raw)

    def test_kg_to_grams(self):
        assert kg_to_grams("2.5") == 2_500
        assert kg_to_grams(3) == 3_000
        with pytest.raises(ValidationError):
            kg_to_grams("heavy")
