"""出站 Webhook 的 HMAC-SHA256 签名生成与验证模块。"""

import hashlib
import hmac


def generate_sign(params: dict, secret: str) -> str:
    """
    生成 Webhook 签名。

    1. 过滤空值和 sign 字段本身
    2. 按 key 的 ASCII 码排序
    3. 拼接为 key=value&key=value（值不做 URL 编码）
    4. 使用共享密钥做 HMAC-SHA256

    返回 64 位小写十六进制字符串。
    """
    filtered = {
        k: v
        for k, v in params.items()
        if k != "sign" and v is not None and str(v) != ""
    }

    sorted_keys = sorted(filtered.keys())

    query_string = "&".join(f"{k}={filtered[k]}" for k in sorted_keys)

    return hmac.new(
        secret.encode("utf-8"), query_string.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def verify_sign(params: dict, secret: str, sign: str) -> bool:
    """以常量时间校验收到的签名。"""
    expected = generate_sign(params, secret)
    return hmac.compare_digest(expected, sign or "")
