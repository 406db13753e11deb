"""지원 저장소.

숏리스트, 스타일리스트/반품 티켓, CSAT 응답, 주문 알림 구독을 sqlite에 저장합니다.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .provider import CsatRecord, TicketRecord

logger = logging.getLogger(__name__)

TICKET_PREFIXES = {"stylist": "STY", "return": "RET"}


def _get_db_path() -> Path:
    """데이터베이스 경로 반환."""
    from src.config import get_config

    return Path(get_config().paths.sqlite_path)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupportRepository:
    """지원 요청 저장소."""

    def __init__(self, db_path: Optional[Path] = None):
        """초기화.

        Args:
            db_path: 데이터베이스 경로 (없으면 설정에서 로드)
        """
        self.db_path = Path(db_path) if db_path else _get_db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_tables()

    def _get_conn(self) -> sqlite3.Connection:
        """DB 연결."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        """테이블 생성."""
        conn = self._get_conn()
        try:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS shortlists (
                    session_id TEXT PRIMARY KEY,
                    items TEXT NOT NULL,
                    updated_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tickets (
                    ticket_id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    customer_email TEXT,
                    customer_name TEXT,
                    status TEXT DEFAULT 'open',
                    priority TEXT DEFAULT 'normal',
                    notes TEXT,
                    order_number TEXT,
                    shortlist TEXT,
                    created_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS csat_responses (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    rating TEXT NOT NULL,
                    score INTEGER NOT NULL,
                    notes TEXT,
                    intent TEXT,
                    timestamp TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS order_update_subscriptions (
                    session_id TEXT NOT NULL,
                    order_number TEXT NOT NULL,
                    created_at TEXT,
                    PRIMARY KEY (session_id, order_number)
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tickets_session ON tickets(session_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_csat_session ON csat_responses(session_id)")

            conn.commit()
            logger.info("지원 테이블 초기화 완료")
        finally:
            conn.close()

    # ============================================
    # 숏리스트
    # ============================================

    def save_shortlist(self, session_id: str, items: List[Dict[str, Any]]) -> int:
        """세션 숏리스트 저장 (덮어쓰기).

        Returns:
            저장된 항목 수
        """
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO shortlists (session_id, items, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET items = excluded.items, updated_at = excluded.updated_at
                """,
                (session_id, json.dumps(items, ensure_ascii=False), _now()),
            )
            conn.commit()
            return len(items)
        finally:
            conn.close()

    def get_shortlist(self, session_id: str) -> List[Dict[str, Any]]:
        """세션 숏리스트 조회."""
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT items FROM shortlists WHERE session_id = ?", (session_id,)).fetchone()
            return json.loads(row["items"]) if row else []
        finally:
            conn.close()

    # ============================================
    # 티켓
    # ============================================

    def create_ticket(
        self,
        session_id: str,
        kind: str,
        customer_name: str = "",
        customer_email: str = "",
        notes: str = "",
        priority: str = "normal",
        shortlist: Optional[List[Dict[str, Any]]] = None,
        order_number: Optional[str] = None,
    ) -> TicketRecord:
        """티켓 생성.

        Args:
            session_id: 위젯 세션 ID
            kind: stylist 또는 return
            priority: normal 또는 high

        Returns:
            생성된 티켓
        """
        prefix = TICKET_PREFIXES.get(kind, "TKT")
        ticket = TicketRecord(
            ticket_id=f"{prefix}-{uuid.uuid4().hex[:8].upper()}",
            session_id=session_id,
            kind=kind,
            customer_email=customer_email,
            customer_name=customer_name,
            priority=priority,
            notes=notes,
            order_number=order_number,
            shortlist=list(shortlist or []),
            created_at=_now(),
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tickets (ticket_id, session_id, kind, customer_email, customer_name,
                                     status, priority, notes, order_number, shortlist, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ticket.ticket_id,
                    ticket.session_id,
                    ticket.kind,
                    ticket.customer_email,
                    ticket.customer_name,
                    ticket.status,
                    ticket.priority,
                    ticket.notes,
                    ticket.order_number,
                    json.dumps(ticket.shortlist, ensure_ascii=False),
                    ticket.created_at,
                ),
            )
            conn.commit()
            logger.info(f"티켓 생성: {ticket.ticket_id} (kind={kind}, priority={priority})")
            return ticket
        finally:
            conn.close()

    def get_ticket(self, ticket_id: str) -> Optional[TicketRecord]:
        """티켓 조회."""
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tickets WHERE ticket_id = ?", (ticket_id,)).fetchone()
            return self._row_to_ticket(row) if row else None
        finally:
            conn.close()

    def list_tickets(self, session_id: str) -> List[TicketRecord]:
        """세션 티켓 목록 (최신순)."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM tickets WHERE session_id = ? ORDER BY created_at DESC",
                (session_id,),
            ).fetchall()
            return [self._row_to_ticket(row) for row in rows]
        finally:
            conn.close()

    def _row_to_ticket(self, row: sqlite3.Row) -> TicketRecord:
        return TicketRecord(
            ticket_id=row["ticket_id"],
            session_id=row["session_id"],
            kind=row["kind"],
            customer_email=row["customer_email"] or "",
            customer_name=row["customer_name"] or "",
            status=row["status"],
            priority=row["priority"],
            notes=row["notes"] or "",
            order_number=row["order_number"],
            shortlist=json.loads(row["shortlist"]) if row["shortlist"] else [],
            created_at=row["created_at"] or "",
        )

    # ============================================
    # CSAT
    # ============================================

    def record_csat(
        self,
        session_id: str,
        rating: str,
        score: int,
        notes: str = "",
        intent: Optional[str] = None,
    ) -> CsatRecord:
        """CSAT 응답 저장."""
        record = CsatRecord(
            id=f"csat_{uuid.uuid4().hex[:12]}",
            session_id=session_id,
            rating=rating,
            score=score,
            notes=notes,
            intent=intent,
            timestamp=_now(),
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO csat_responses (id, session_id, rating, score, notes, intent, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (record.id, record.session_id, record.rating, record.score, record.notes, record.intent, record.timestamp),
            )
            conn.commit()
            return record
        finally:
            conn.close()

    def list_csat(self, session_id: Optional[str] = None) -> List[CsatRecord]:
        """CSAT 응답 목록."""
        conn = self._get_conn()
        try:
            if session_id:
                rows = conn.execute(
                    "SELECT * FROM csat_responses WHERE session_id = ? ORDER BY timestamp",
                    (session_id,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM csat_responses ORDER BY timestamp").fetchall()
            return [
                CsatRecord(
                    id=row["id"],
                    session_id=row["session_id"],
                    rating=row["rating"],
                    score=row["score"],
                    notes=row["notes"] or "",
                    intent=row["intent"],
                    timestamp=row["timestamp"] or "",
                )
                for row in rows
            ]
        finally:
            conn.close()

    # ============================================
    # 주문 알림
    # ============================================

    def subscribe_order_updates(self, session_id: str, order_number: str) -> bool:
        """주문 배송 알림 구독.

        Returns:
            새로 구독했으면 True, 이미 구독 중이면 False
        """
        conn = self._get_conn()
        try:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO order_update_subscriptions (session_id, order_number, created_at)
                VALUES (?, ?, ?)
                """,
                (session_id, order_number, _now()),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def list_subscriptions(self, session_id: str) -> List[str]:
        """세션이 구독 중인 주문번호 목록."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT order_number FROM order_update_subscriptions WHERE session_id = ? ORDER BY created_at",
                (session_id,),
            ).fetchall()
            return [row["order_number"] for row in rows]
        finally:
            conn.close()
