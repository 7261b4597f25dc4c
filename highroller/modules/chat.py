# highroller/modules/chat.py
"""Chat log kept in TinyDB with a fixed retention."""
from __future__ import annotations
import os
import threading
import time
from typing import Any, Dict, List, Optional

from tinydb import TinyDB
from tinydb.storages import MemoryStorage


class ChatLog:
    def __init__(self, db: TinyDB, retention: int = 100):
        self._db = db
        self._table = db.table("chat")
        self._retention = max(1, int(retention))
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: Optional[str], retention: int = 100) -> "ChatLog":
        if not path:
            return cls(TinyDB(storage=MemoryStorage), retention)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        return cls(TinyDB(path, ensure_ascii=False, encoding="utf-8"), retention)

    def append(self, author: str, text: str, ts: Optional[float] = None) -> Dict[str, Any]:
        doc = {"author": author, "text": text, "time": float(ts if ts is not None else time.time())}
        with self._lock:
            self._table.insert(doc)
            docs = self._table.all()
            overflow = len(docs) - self._retention
            if overflow > 0:
                oldest = sorted(docs, key=lambda d: (d.get("time", 0), d.doc_id))[:overflow]
                self._table.remove(doc_ids=[d.doc_id for d in oldest])
        return doc

    def recent(self, limit: int) -> List[Dict[str, Any]]:
        """Newest ``limit`` messages, oldest first."""
        with self._lock:
            docs = sorted(self._table.all(), key=lambda d: (d.get("time", 0), d.doc_id))
        return [dict(d) for d in docs[-int(limit):]] if limit > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._table)

    def close(self) -> None:
        self._db.close()
