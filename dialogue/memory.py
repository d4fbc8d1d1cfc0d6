from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
from loguru import logger

from .exceptions import MemoryStoreError
from .states import WeightedMemory


_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    speaker_a_id TEXT NOT NULL,
    speaker_b_id TEXT NOT NULL,
    speaker_a_name TEXT NOT NULL,
    speaker_b_name TEXT NOT NULL,
    max_turns INTEGER NOT NULL,
    total_turns INTEGER DEFAULT 0,
    is_complete BOOLEAN DEFAULT 0,
    llm_provider TEXT,
    model_name TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    completed_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL,
    turn_number INTEGER NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    speaker_id TEXT NOT NULL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_turn ON messages(conversation_id, turn_number);
CREATE INDEX IF NOT EXISTS idx_conversations_speakers ON conversations(speaker_a_id, speaker_b_id);
"""

_PAIR_FILTER = """
    ((c.speaker_a_id = ? AND c.speaker_b_id = ?) OR (c.speaker_a_id = ? AND c.speaker_b_id = ?))
    AND c.is_complete = 1
"""

_WORD_RE = re.compile(r"\w+")
_CONTENT_WORD_RE = re.compile(r"\w{4,}")

# weighted memory blend
RECENCY_WEIGHT = 0.5
RELEVANCE_WEIGHT = 0.3
FREQUENCY_WEIGHT = 0.2
POOL_FACTOR = 5


@dataclass
class ConversationRecord:
    speaker_a_id: str
    speaker_b_id: str
    speaker_a_name: str
    speaker_b_name: str
    max_turns: int
    total_turns: int = 0
    is_complete: bool = False
    llm_provider: Optional[str] = None
    model_name: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class MessageRecord:
    conversation_id: int
    turn_number: int
    role: str
    content: str
    speaker_id: str
    id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class PastConversation:
    conversation_id: int
    speaker_a_name: str
    speaker_b_name: str
    total_turns: int
    created_at: str
    first_message: Optional[str] = None
    last_message: Optional[str] = None


class EpisodicMemoryStore:
    """SQLite-backed store of past conversations between persona pairs.

    Every public method raises :class:`MemoryStoreError` on database failure;
    callers decide whether that is fatal.
    """

    def __init__(self, db_path: str = "conversations.db") -> None:
        self.db_path = db_path
        try:
            self._conn = sqlite3.connect(db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.executescript(_SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            raise MemoryStoreError(f"Failed to open memory store at {db_path}: {e}") from e
        logger.debug(f"memory_store_open | path={db_path}")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            cur = self._conn.execute(sql, params)
            self._conn.commit()
            return cur
        except sqlite3.Error as e:
            self._conn.rollback()
            raise MemoryStoreError(str(e)) from e

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise MemoryStoreError(str(e)) from e

    # -- conversations -----------------------------------------------------

    def create_conversation(self, record: ConversationRecord) -> int:
        cur = self._execute(
            """
            INSERT INTO conversations (
                speaker_a_id, speaker_b_id, speaker_a_name, speaker_b_name,
                max_turns, total_turns, is_complete, llm_provider, model_name
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.speaker_a_id,
                record.speaker_b_id,
                record.speaker_a_name,
                record.speaker_b_name,
                record.max_turns,
                record.total_turns,
                1 if record.is_complete else 0,
                record.llm_provider,
                record.model_name,
            ),
        )
        return int(cur.lastrowid)

    def update_conversation(
        self,
        conversation_id: int,
        total_turns: Optional[int] = None,
        is_complete: Optional[bool] = None,
    ) -> None:
        fields: List[str] = []
        values: List[Any] = []
        if total_turns is not None:
            fields.append("total_turns = ?")
            values.append(total_turns)
        if is_complete is not None:
            fields.append("is_complete = ?")
            values.append(1 if is_complete else 0)
            if is_complete:
                fields.append("completed_at = ?")
                values.append(datetime.now(timezone.utc).isoformat())
        if not fields:
            return
        values.append(conversation_id)
        self._execute(f"UPDATE conversations SET {', '.join(fields)} WHERE id = ?", tuple(values))

    def get_conversation(self, conversation_id: int) -> Optional[ConversationRecord]:
        rows = self._query("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
        if not rows:
            return None
        r = rows[0]
        return ConversationRecord(
            id=r["id"],
            speaker_a_id=r["speaker_a_id"],
            speaker_b_id=r["speaker_b_id"],
            speaker_a_name=r["speaker_a_name"],
            speaker_b_name=r["speaker_b_name"],
            max_turns=r["max_turns"],
            total_turns=r["total_turns"],
            is_complete=bool(r["is_complete"]),
            llm_provider=r["llm_provider"],
            model_name=r["model_name"],
            created_at=r["created_at"],
            completed_at=r["completed_at"],
        )

    # -- messages ----------------------------------------------------------

    def save_message(self, record: MessageRecord) -> int:
        cur = self._execute(
            """
            INSERT INTO messages (conversation_id, turn_number, role, content, speaker_id)
            VALUES (?, ?, ?, ?, ?)
            """,
            (record.conversation_id, record.turn_number, record.role, record.content, record.speaker_id),
        )
        return int(cur.lastrowid)

    def get_messages(self, conversation_id: int) -> List[MessageRecord]:
        rows = self._query(
            """
            SELECT * FROM messages WHERE conversation_id = ?
            ORDER BY turn_number ASC, id ASC
            """,
            (conversation_id,),
        )
        return [
            MessageRecord(
                id=r["id"],
                conversation_id=r["conversation_id"],
                turn_number=r["turn_number"],
                role=r["role"],
                content=r["content"],
                speaker_id=r["speaker_id"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # -- retrieval ---------------------------------------------------------

    def get_past_conversations(self, speaker_a: str, speaker_b: str, limit: int = 5) -> List[PastConversation]:
        rows = self._query(
            f"""
            SELECT c.id, c.speaker_a_name, c.speaker_b_name, c.total_turns, c.created_at
            FROM conversations c
            WHERE {_PAIR_FILTER}
            ORDER BY c.id DESC
            LIMIT ?
            """,
            (speaker_a, speaker_b, speaker_b, speaker_a, limit),
        )
        out = []
        for r in rows:
            msgs = self.get_messages(r["id"])
            out.append(
                PastConversation(
                    conversation_id=r["id"],
                    speaker_a_name=r["speaker_a_name"],
                    speaker_b_name=r["speaker_b_name"],
                    total_turns=r["total_turns"],
                    created_at=r["created_at"],
                    first_message=msgs[0].content if msgs else None,
                    last_message=msgs[-1].content if msgs else None,
                )
            )
        return out

    def get_relevant_past_messages(self, speaker_a: str, speaker_b: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent messages from completed conversations between the pair, newest first."""
        rows = self._query(
            f"""
            SELECT m.conversation_id, m.turn_number, m.content, m.speaker_id
            FROM messages m
            INNER JOIN conversations c ON m.conversation_id = c.id
            WHERE {_PAIR_FILTER}
            ORDER BY m.id DESC
            LIMIT ?
            """,
            (speaker_a, speaker_b, speaker_b, speaker_a, limit),
        )
        return [dict(r) for r in rows]

    def get_weighted_memories(
        self,
        speaker_a: str,
        speaker_b: str,
        topic_hint: Optional[str] = None,
        limit: int = 2,
    ) -> List[WeightedMemory]:
        """Rank past messages by a blend of recency, topic relevance and frequency.

        The candidate pool is the ``limit * 5`` most recent messages between the
        pair. Without a topic hint every candidate gets a neutral relevance of 0.5.
        """
        if limit <= 0:
            return []
        pool = self.get_relevant_past_messages(speaker_a, speaker_b, limit * POOL_FACTOR)
        if not pool:
            return []

        n = len(pool)
        recency = 1.0 - np.arange(n) / n

        hint_words = set(_WORD_RE.findall((topic_hint or "").lower()))
        if hint_words:
            relevance = np.array(
                [len(hint_words & set(_WORD_RE.findall(p["content"].lower()))) / len(hint_words) for p in pool]
            )
        else:
            relevance = np.full(n, 0.5)

        bags = [set(_CONTENT_WORD_RE.findall(p["content"].lower())) for p in pool]

        if n > 1:
            frequency = np.array(
                [sum(1 for j, other in enumerate(bags) if j != i and bag & other) / (n - 1)
                 for i, bag in enumerate(bags)]
            )
        else:
            frequency = np.zeros(n)

        weights = RECENCY_WEIGHT * recency + RELEVANCE_WEIGHT * relevance + FREQUENCY_WEIGHT * frequency
        # stable so ties keep recency order
        order = np.argsort(-weights, kind="stable")[:limit]
        return [
            WeightedMemory(
                content=pool[i]["content"],
                conversation_id=pool[i]["conversation_id"],
                turn_number=pool[i]["turn_number"],
                speaker_id=pool[i]["speaker_id"],
                weight=float(weights[i]),
                recency=float(recency[i]),
                relevance=float(relevance[i]),
                frequency=float(frequency[i]),
            )
            for i in order
        ]

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as e:
            raise MemoryStoreError(str(e)) from e
