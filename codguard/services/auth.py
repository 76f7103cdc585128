"""
操作员认证模块：JWT 签发与验证、bcrypt 密码哈希、带锁定的登录，
以及解析当前操作员的 FastAPI 依赖。
"""

import os
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import HTTPException, Request
from jose import JWTError, jwt

from codguard.database import get_db

JWT_SECRET = os.environ.get("JWT_SECRET", "change-me-to-a-random-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_HOURS = 12

MAX_LOGIN_FAILURES = 5
LOCKOUT_MINUTES = 15


def hash_password(password: str) -> str:
    """使用 bcrypt 哈希密码。"""
    return bcrypt.hashpw(
        password.encode("utf-8"), bcrypt.gensalt()
    ).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def create_token(username: str, owner_id: int) -> str:
    """签发 JWT，携带操作员及其所属商户。"""
    expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
    payload = {"sub": username, "owner_id": owner_id, "exp": expire}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> dict:
    """
    解码并验证 JWT。

    Returns:
        解码后的 payload

    Raises:
        ValueError: token 无效、过期或缺少必要字段
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        raise ValueError(f"Invalid token: {e}")
    if "sub" not in payload or "owner_id" not in payload:
        raise ValueError("Token is missing operator claims")
    return payload


def authenticate(username: str, password: str) -> dict:
    """
    校验操作员凭据。

    - 连续失败 5 次锁定 15 分钟，锁定期间拒绝登录
    - 登录成功重置失败计数并返回 token
    - 登录失败递增计数，达到上限时锁定账户

    Returns:
        {"code": 1, "token": "...", "owner_id": ...}

    Raises:
        ValueError: 认证失败，消息中说明原因
    """
    db = get_db()
    try:
        operator = db.execute(
            "SELECT * FROM operators WHERE username = ?", (username,)
        ).fetchone()

        if not operator:
            raise ValueError("Invalid username or password")

        if operator["locked_until"]:
            locked_until = datetime.strptime(operator["locked_until"], "%Y-%m-%d %H:%M:%S")
            if datetime.now() < locked_until:
                raise ValueError("Account is locked, try again later")
            db.execute(
                "UPDATE operators SET login_fail_count = 0, locked_until = NULL WHERE id = ?",
                (operator["id"],),
            )
            db.commit()
            operator = db.execute(
                "SELECT * FROM operators WHERE id = ?", (operator["id"],)
            ).fetchone()

        if not verify_password(password, operator["password_hash"]):
            fail_count = operator["login_fail_count"] + 1
            if fail_count >= MAX_LOGIN_FAILURES:
                locked_until = (datetime.now() + timedelta(minutes=LOCKOUT_MINUTES)).strftime(
                    "%Y-%m-%d %H:%M:%S"
                )
                db.execute(
                    "UPDATE operators SET login_fail_count = ?, locked_until = ? WHERE id = ?",
                    (fail_count, locked_until, operator["id"]),
                )
            else:
                db.execute(
                    "UPDATE operators SET login_fail_count = ? WHERE id = ?",
                    (fail_count, operator["id"]),
                )
            db.commit()
            raise ValueError("Invalid username or password")

        db.execute(
            "UPDATE operators SET login_fail_count = 0, locked_until = NULL WHERE id = ?",
            (operator["id"],),
        )
        db.commit()

        token = create_token(username, operator["owner_id"])
        return {"code": 1, "token": token, "owner_id": operator["owner_id"]}
    finally:
        db.close()


def get_current_operator(request: Request) -> dict:
    """
    FastAPI 依赖：从 Authorization 头（Bearer）或 "token" Cookie 中读取 JWT 并验证。

    Returns:
        解码后的 payload，包含 "sub"（用户名）和 "owner_id"

    Raises:
        HTTPException(401): token 缺失或无效
    """
    token = None

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:]

    if not token:
        token = request.cookies.get("token")

    if not token:
        raise HTTPException(status_code=401, detail="Authentication token missing")

    try:
        return verify_token(token)
    except ValueError:
        raise HTTPException(status_code=401, detail="Authentication token invalid or expired")
