from decimal import Decimal
from datetime import date

from utils import (
    generate_uid, empty_to_none, to_money, validate_date_format,
    validate_month, validate_year, first_day_of_month
)


def test_generate_uid_is_unique_uuid_string():
    """Each call should generate a unique 36 character UUID string."""
    uid1 = generate_uid()
    uid2 = generate_uid()
    assert isinstance(uid1, str)
    assert len(uid1) == 36
    assert uid1 != uid2


def test_empty_to_none():
    assert empty_to_none("") is None
    assert empty_to_none("   ") is None
    assert empty_to_none(None) is None
    assert empty_to_none("Rimi") == "Rimi"
    assert empty_to_none(0) == 0


def test_to_money_rounds_half_up_to_two_places():
    assert to_money(3.5) == Decimal("3.50")
    assert to_money(2.675) == Decimal("2.68")
    assert to_money("0.125") == Decimal("0.13")
    assert to_money(2500) == Decimal("2500.00")


def test_to_money_accepts_comma_decimal_separator():
    assert to_money("12,5") == Decimal("12.50")
    assert to_money(" 1 200,40 ") == Decimal("1200.40")


def test_to_money_rejects_non_numbers():
    assert to_money(None) is None
    assert to_money("") is None
    assert to_money("abc") is None
    assert to_money(True) is None
    assert to_money(float("nan")) is None


def test_to_money_rejects_values_too_large_to_round():
    assert to_money(1e30) is None
    assert to_money("1e30") is None
    assert to_money(1e20) == Decimal("100000000000000000000.00")


def test_validate_date_format():
    assert validate_date_format("2024-01-05") is True
    assert validate_date_format("2024-02-30") is False
    assert validate_date_format("05/01/2024") is False
    assert validate_date_format(None) is False


def test_validate_month_and_year():
    assert validate_month(1) and validate_month(12)
    assert not validate_month(0)
    assert not validate_month(13)
    assert not validate_month("1")
    assert validate_year(2000) and validate_year(2100)
    assert not validate_year(1999)
    assert not validate_year(True)


def test_first_day_of_month():
    assert first_day_of_month(2024, 2) == date(2024, 2, 1)
