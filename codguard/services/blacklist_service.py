"""客户黑名单：按商户维护的标记手机号及原因。"""

import logging
from datetime import datetime

from codguard.database import get_db
from codguard.models.schemas import BlacklistEntry
from codguard.services.phone import is_valid_phone, normalize_phone

logger = logging.getLogger(__name__)


class BlacklistService:
    """黑名单管理：添加、移除、列表，以及风险评分使用的查询集合。"""

    def add(self, owner_id: int, phone: str, reason: str | None = None) -> BlacklistEntry:
        """
        将手机号加入商户黑名单，以规范化形式存储。

        Raises:
            ValueError: 不是有效的越南手机号，或已在黑名单中
        """
        if not is_valid_phone(phone):
            raise ValueError(f"Invalid phone number: {phone}")

        normalized = normalize_phone(phone)
        reason = (reason or "").strip() or None
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO customer_blacklist (owner_id, phone, reason, added_at)
                   VALUES (?, ?, ?, ?)""",
                (owner_id, normalized, reason, now),
            )
            db.commit()
        except Exception as e:
            db.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise ValueError(f"Phone {normalized} is already blacklisted") from e
            raise
        finally:
            db.close()

        logger.info("手机号已加入黑名单 (owner_id=%d, phone=%s)", owner_id, normalized)
        return BlacklistEntry(
            id=cursor.lastrowid,
            owner_id=owner_id,
            phone=normalized,
            reason=reason,
            added_at=now,
        )

    def remove(self, owner_id: int, phone: str) -> None:
        """
        从商户黑名单中移除手机号。

        Raises:
            ValueError: 手机号不在黑名单中
        """
        normalized = normalize_phone(phone)
        db = get_db()
        try:
            cursor = db.execute(
                "DELETE FROM customer_blacklist WHERE owner_id = ? AND phone = ?",
                (owner_id, normalized),
            )
            db.commit()
            if cursor.rowcount == 0:
                raise ValueError(f"Phone {normalized} is not blacklisted")
        finally:
            db.close()
        logger.info("手机号已移出黑名单 (owner_id=%d, phone=%s)", owner_id, normalized)

    def list_entries(self, owner_id: int) -> list:
        """商户的黑名单条目，最新的在前。"""
        db = get_db()
        try:
            rows = db.execute(
                """SELECT id, owner_id, phone, reason, added_at
                   FROM customer_blacklist
                   WHERE owner_id = ?
                   ORDER BY added_at DESC, id DESC""",
                (owner_id,),
            ).fetchall()
        finally:
            db.close()
        return [
            BlacklistEntry(
                id=r["id"],
                owner_id=r["owner_id"],
                phone=r["phone"],
                reason=r["reason"],
                added_at=r["added_at"],
            )
            for r in rows
        ]

    def phone_set(self, owner_id: int) -> frozenset:
        """商户黑名单中的规范化手机号。"""
        db = get_db()
        try:
            rows = db.execute(
                "SELECT phone FROM customer_blacklist WHERE owner_id = ?", (owner_id,)
            ).fetchall()
        finally:
            db.close()
        return frozenset(normalize_phone(r["phone"]) for r in rows)
