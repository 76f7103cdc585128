"""越南手机号规范化，仅用于比较和查询。"""

import re

_STRIP_CHARS = re.compile(r"[\s.\-()]")
_INTL_PREFIX = re.compile(r"^\+84(\d{9})$")
_VALID_PHONE = re.compile(r"^0\d{9}$")


def normalize_phone(raw: str | None) -> str:
    """
    将手机号规范化为可比较的形式。

    1. 去掉空白、点、连字符和括号
    2. "+84" 后接恰好 9 位数字时改写为 "0" + 这 9 位

    结果不会覆盖用户录入的原始号码。
    """
    if not raw:
        return ""
    s = _STRIP_CHARS.sub("", str(raw))
    m = _INTL_PREFIX.match(s)
    if m:
        return "0" + m.group(1)
    return s


def is_valid_phone(raw: str | None) -> bool:
    """规范化后为 "0" 加 9 位数字即视为有效。"""
    return bool(_VALID_PHONE.match(normalize_phone(raw)))
