# -*- coding: utf-8 -*-
"""
支付记录模块
记录每次计费调用，用于统计入口（analytics / analytics-transactions / analytics-csv），
最多保留 max_records 条

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

import csv
import io
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, List
from pathlib import Path
import logging

logger = logging.getLogger(__name__)

INCOMING = "incoming"
OUTGOING = "outgoing"

CSV_FIELDS = ["id", "timestamp", "direction", "entrypoint", "amount", "payer", "network"]


def _utc_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PaymentTracker:
    """支付记录器"""

    def __init__(self, db_path: str = "data/payments.db", max_records: int = 10000):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.MAX_RECORDS = max_records
        self._init_db()

    def _init_db(self):
        """初始化数据库"""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS payments (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    entrypoint TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    payer TEXT,
                    network TEXT
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_payments_timestamp
                ON payments(timestamp DESC)
            """)
            conn.commit()

    def record(
        self,
        direction: str,
        entrypoint: str,
        amount: int,
        payer: str = None,
        network: str = "prepaid",
        timestamp: datetime = None
    ) -> int:
        """记录一笔支付，返回记录 ID"""
        if direction not in (INCOMING, OUTGOING):
            raise ValueError(f"未知的支付方向: {direction}")

        timestamp = timestamp or datetime.now(timezone.utc)
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("""
                INSERT INTO payments (timestamp, direction, entrypoint, amount, payer, network)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (_utc_iso(timestamp), direction, entrypoint, int(amount), payer, network))
            conn.commit()
            record_id = cursor.lastrowid

            self._cleanup_old_records(conn)

        logger.debug(f"记录支付 {direction} {entrypoint} {amount}")
        return record_id

    def _cleanup_old_records(self, conn: sqlite3.Connection):
        """清理超出限制的旧记录"""
        cursor = conn.execute("SELECT COUNT(*) FROM payments")
        count = cursor.fetchone()[0]

        if count > self.MAX_RECORDS:
            delete_count = count - self.MAX_RECORDS
            conn.execute("""
                DELETE FROM payments WHERE id IN (
                    SELECT id FROM payments ORDER BY id ASC LIMIT ?
                )
            """, (delete_count,))
            conn.commit()
            logger.info(f"清理了 {delete_count} 条旧的支付记录")

    def _window_start(self, window_ms: Optional[int]) -> Optional[datetime]:
        if window_ms is None:
            return None
        try:
            return datetime.now(timezone.utc) - timedelta(milliseconds=window_ms)
        except OverflowError:
            # 窗口超出可表示的日期范围，视为不限起点
            return None

    def _query(self, window_ms: Optional[int], limit: int = None) -> List[Dict]:
        query = "SELECT * FROM payments WHERE 1=1"
        params = []

        start = self._window_start(window_ms)
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(_utc_iso(start))

        query += " ORDER BY id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def get_summary(self, window_ms: Optional[int] = None) -> Dict:
        """
        获取汇总统计

        金额合计可能超出 JSON 安全整数范围，统一以字符串返回。
        """
        start = self._window_start(window_ms)
        query = """
            SELECT direction, COALESCE(SUM(amount), 0), COUNT(*)
            FROM payments
        """
        params = []
        if start is not None:
            query += " WHERE timestamp >= ?"
            params.append(_utc_iso(start))
        query += " GROUP BY direction"

        totals = {INCOMING: (0, 0), OUTGOING: (0, 0)}
        with sqlite3.connect(self.db_path) as conn:
            for direction, total, count in conn.execute(query, params).fetchall():
                totals[direction] = (total, count)

        incoming_total, incoming_count = totals[INCOMING]
        outgoing_total, outgoing_count = totals[OUTGOING]

        return {
            "outgoingTotal": str(outgoing_total),
            "incomingTotal": str(incoming_total),
            "netTotal": str(incoming_total - outgoing_total),
            "outgoingCount": outgoing_count,
            "incomingCount": incoming_count,
            "windowStart": _utc_iso(start) if start else None,
            "windowEnd": _utc_iso(datetime.now(timezone.utc)),
        }

    def get_transactions(self, window_ms: Optional[int] = None, limit: int = 50) -> List[Dict]:
        """获取交易列表（最新在前）"""
        rows = self._query(window_ms, limit=limit)
        for row in rows:
            row["amount"] = str(row["amount"])
        return rows

    def export_csv(self, window_ms: Optional[int] = None) -> str:
        """导出为 CSV 文本"""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, lineterminator="\n")
        writer.writeheader()
        for row in self._query(window_ms):
            writer.writerow({k: row.get(k) for k in CSV_FIELDS})
        return buffer.getvalue()

    def clear(self):
        """清空所有记录"""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM payments")
            conn.commit()
        logger.info("已清空所有支付记录")
