"""手机号规范化单元测试。"""

import pytest

from codguard.services.phone import is_valid_phone, normalize_phone


class TestNormalizePhone:

    @pytest.mark.parametrize("raw, expected", [
        ("0901234567", "0901234567"),
        ("090 123 4567", "0901234567"),
        ("090.123.4567", "0901234567"),
        ("090-123-4567", "0901234567"),
        ("(090) 123-4567", "0901234567"),
        ("+84901234567", "0901234567"),
        ("+84 90 123 4567", "0901234567"),
    ])
    def test_normalizes(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_empty(self):
        assert normalize_phone("") == ""
        assert normalize_phone(None) == ""

    def test_intl_prefix_requires_nine_digits(self):
        """+84 后位数不符时，去除分隔符后保持原样。"""
        assert normalize_phone("+8490123456") == "+8490123456"
        assert normalize_phone("+849012345678") == "+849012345678"

    def test_idempotent(self):
        once = normalize_phone("+84 90-123.4567")
        assert normalize_phone(once) == once


class TestIsValidPhone:

    def test_valid(self):
        assert is_valid_phone("0901234567")
        assert is_valid_phone("+84 901 234 567")

    @pytest.mark.parametrize("raw", ["", None, "12345", "1901234567", "090123456a", "09012345678"])
    def test_invalid(self, raw):
        assert not is_valid_phone(raw)
