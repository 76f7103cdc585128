"""Webhook HMAC 签名单元测试。"""

import hashlib
import hmac
import re

from codguard.services.sign import generate_sign, verify_sign


class TestGenerateSign:
    """generate_sign 单元测试。"""

    def test_basic_sign(self):
        sign = generate_sign({"a": "1", "b": "2", "c": "3"}, "mykey")
        # 64 位小写十六进制
        assert re.fullmatch(r"[0-9a-f]{64}", sign)

    def test_ascii_sort_order(self):
        """输入的键顺序不影响签名。"""
        params_a = {"z": "1", "a": "2", "m": "3"}
        params_b = {"a": "2", "m": "3", "z": "1"}
        assert generate_sign(params_a, "k") == generate_sign(params_b, "k")

    def test_filters_empty_values(self):
        base = {"a": "1", "b": "2"}
        with_empty = {"a": "1", "b": "2", "c": "", "d": None}
        assert generate_sign(base, "k") == generate_sign(with_empty, "k")

    def test_filters_sign(self):
        base = {"a": "1", "b": "2"}
        with_sign = {"a": "1", "b": "2", "sign": "abc"}
        assert generate_sign(base, "k") == generate_sign(with_sign, "k")

    def test_non_string_values(self):
        """整数签名前用 str() 格式化。"""
        assert generate_sign({"amount": 150000}, "k") == generate_sign({"amount": "150000"}, "k")

    def test_known_value(self):
        expected = hmac.new(b"KEY", b"a=1&b=2&c=3", hashlib.sha256).hexdigest()
        assert generate_sign({"c": "3", "a": "1", "b": "2"}, "KEY") == expected


class TestVerifySign:
    """verify_sign 单元测试。"""

    def test_valid_sign(self):
        params = {"order_id": "ORD1", "amount": 150000, "event_type": "CONFIRMATION_SENT"}
        sign = generate_sign(params, "secret")
        assert verify_sign(params, "secret", sign) is True

    def test_invalid_sign(self):
        assert verify_sign({"a": "1"}, "secret", "0" * 64) is False

    def test_missing_sign(self):
        assert verify_sign({"a": "1"}, "secret", None) is False

    def test_wrong_key_fails(self):
        params = {"a": "1"}
        sign = generate_sign(params, "correct_key")
        assert verify_sign(params, "wrong_key", sign) is False

    def test_tampered_params_fail(self):
        sign = generate_sign({"a": "1", "b": "2"}, "k")
        assert verify_sign({"a": "1", "b": "3"}, "k", sign) is False
