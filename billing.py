"""
计费模块

预付费 API Token：每个 Token 有余额（最小货币单位），
付费入口调用成功后按固定价格扣费。

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

import os
import secrets
import sqlite3
import logging
from datetime import datetime
from typing import Optional, List, Dict

logger = logging.getLogger(__name__)


class PaymentRequiredError(Exception):
    """余额不足或未提供有效 Token"""

    def __init__(self, entrypoint: str, price: int, reason: str):
        super().__init__(f"Payment required for {entrypoint}: {reason}")
        self.entrypoint = entrypoint
        self.price = price
        self.reason = reason


class BillingManager:
    """计费管理器"""

    def __init__(self, db_path: str, config: dict):
        self.db_path = db_path
        self.config = config
        self.enabled = config.get("payments", {}).get("enabled", True)

        # 确保目录存在
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

        self._init_tables()

    def _get_conn(self) -> sqlite3.Connection:
        """获取数据库连接"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_tables(self):
        """初始化 Token 表"""
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS api_tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    token TEXT UNIQUE NOT NULL,
                    credits INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT,
                    last_used TEXT,
                    is_active INTEGER DEFAULT 1
                )
            """)
            conn.commit()
        finally:
            conn.close()

    # ==================== Token 管理 ====================

    def create_api_token(self, name: str, credits: int = 0) -> str:
        """创建 API Token"""
        token = f"tzi_{secrets.token_urlsafe(32)}"

        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO api_tokens (name, token, credits, created_at, is_active)
                VALUES (?, ?, ?, ?, 1)
            """, (name, token, int(credits), datetime.now().isoformat()))
            conn.commit()
        finally:
            conn.close()

        logger.info(f"创建 Token: {name}（余额 {credits}）")
        return token

    def get_token_info(self, token: str) -> Optional[Dict]:
        """查询 Token 信息（仅有效 Token）"""
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT id, name, credits FROM api_tokens
                WHERE token = ? AND is_active = 1
            """, (token,))
            row = cursor.fetchone()
            if not row:
                return None
            return {"id": row[0], "name": row[1], "credits": row[2]}
        finally:
            conn.close()

    def list_api_tokens(self) -> List[Dict]:
        """列出所有 API Token"""
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT id, name, token, credits, created_at, last_used, is_active
                FROM api_tokens ORDER BY created_at DESC
            """)
            rows = cursor.fetchall()

            return [{
                "id": row[0],
                "name": row[1],
                "token": row[2][:12] + "..." if row[2] else "",
                "credits": row[3],
                "created_at": row[4],
                "last_used": row[5],
                "is_active": bool(row[6])
            } for row in rows]
        finally:
            conn.close()

    def top_up(self, token_id: int, amount: int) -> bool:
        """充值"""
        if amount <= 0:
            raise ValueError("充值金额必须大于 0")

        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE api_tokens SET credits = credits + ? WHERE id = ?
            """, (int(amount), token_id))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def revoke_api_token(self, token_id: int) -> bool:
        """撤销 API Token"""
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE api_tokens SET is_active = 0 WHERE id = ?
            """, (token_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def delete_api_token(self, token_id: int) -> bool:
        """删除 API Token"""
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM api_tokens WHERE id = ?", (token_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # ==================== 计费 ====================

    def authorize(self, token: Optional[str], entrypoint: str, price: int) -> Optional[Dict]:
        """
        调用前检查余额

        免费入口或未启用计费时返回 None，不需要 Token。
        """
        if not self.enabled or price <= 0:
            return None
        if not token:
            raise PaymentRequiredError(entrypoint, price, "missing API token")

        info = self.get_token_info(token)
        if info is None:
            raise PaymentRequiredError(entrypoint, price, "invalid API token")
        if info["credits"] < price:
            raise PaymentRequiredError(entrypoint, price, "insufficient credits")
        return info

    def charge(self, token: str, entrypoint: str, price: int):
        """
        扣费（在处理函数成功后调用）

        余额不会被扣成负数。
        """
        conn = self._get_conn()
        try:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE api_tokens SET credits = credits - ?, last_used = ?
                WHERE token = ? AND is_active = 1 AND credits >= ?
            """, (price, datetime.now().isoformat(), token, price))
            conn.commit()
            if cursor.rowcount == 0:
                raise PaymentRequiredError(entrypoint, price, "insufficient credits")
        finally:
            conn.close()
