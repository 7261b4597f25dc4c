from __future__ import annotations

import os
import sqlite3
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

from highroller.inc.errors import AlreadySettled, InsufficientFunds, StoreUnavailable, UnknownAccount
from highroller.inc.logging import logger
from highroller.inc.settings import Settings, get_data_dir
from highroller.inc.store import Account, LedgerEntry

_ACCOUNT_COLUMNS = "name, secret, chips, bank, origin, created_at, last_active, last_bonus"
_ENTRY_COLUMNS = "entry_id, name, kind, stake, payout, status, created_at, settled_at"


class Database:
    """
    SQLite-backed account store and wager ledger.

    One connection per call, serialized through a process-wide lock. Balance
    changes are conditional UPDATEs inside ``BEGIN IMMEDIATE`` transactions, so
    two writers can never both spend the same chips, even across processes.
    """

    def __init__(self, path: str, busy_timeout: float = 30.0, retries: int = 10, retry_delay: float = 0.2):
        self._path = path
        self._busy_timeout = busy_timeout
        self._retries = max(1, int(retries))
        self._retry_delay = retry_delay
        self._lock = threading.RLock()
        self._initialized = False
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: Optional[Settings]) -> "Database":
        if settings is None:
            return cls(os.path.join(get_data_dir(), "casino.db"))
        path = settings.get("DATABASE.path", "", str) or os.path.join(get_data_dir(settings), "casino.db")
        return cls(
            path,
            busy_timeout=settings.get("DATABASE.busy_timeout", 30.0, float),
            retries=settings.get("DATABASE.retries", 10, int),
            retry_delay=settings.get("DATABASE.retry_delay", 0.2, float),
        )

    # ---------------- connection helpers ----------------
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout * 1000)}")
        return conn

    def _with_conn(self, fn: Callable[[sqlite3.Connection], Any]) -> Any:
        last_err: Optional[Exception] = None
        for attempt in range(self._retries):
            with self._lock:
                try:
                    conn = self._connect()
                    try:
                        with conn:
                            return fn(conn)
                    finally:
                        conn.close()
                except sqlite3.OperationalError as exc:
                    last_err = exc
                    if "locked" not in str(exc).lower() and "busy" not in str(exc).lower():
                        logger.warning("[database] sqlite error: %s", exc)
                        raise StoreUnavailable() from exc
                except sqlite3.Error as exc:
                    logger.warning("[database] sqlite error: %s", exc)
                    raise StoreUnavailable() from exc
            logger.warning("[database] database locked, retrying (%s/%s)", attempt + 1, self._retries)
            time.sleep(self._retry_delay * (attempt + 1))
        raise StoreUnavailable() from last_err

    # ---------------- schema ----------------
    def initialize(self) -> None:
        with self._lock:
            if self._initialized:
                return

            def _init(conn):
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS accounts (
                        name TEXT PRIMARY KEY,
                        secret TEXT NOT NULL,
                        chips INTEGER NOT NULL DEFAULT 0 CHECK (chips >= 0),
                        bank INTEGER NOT NULL DEFAULT 0,
                        origin TEXT,
                        created_at REAL,
                        last_active REAL,
                        last_bonus REAL
                    )
                    """
                )
                conn.execute("CREATE INDEX IF NOT EXISTS accounts_origin ON accounts (origin)")
                conn.execute("CREATE INDEX IF NOT EXISTS accounts_chips ON accounts (chips DESC)")
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ledger (
                        entry_id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        kind TEXT NOT NULL,
                        stake INTEGER NOT NULL,
                        payout INTEGER NOT NULL DEFAULT 0,
                        status TEXT NOT NULL,
                        created_at REAL,
                        settled_at REAL
                    )
                    """
                )

            self._with_conn(_init)
            self._initialized = True
            logger.debug("[database] schema ready at %s", self._path)

    @staticmethod
    def _to_account(row: sqlite3.Row) -> Account:
        return Account(
            name=row["name"],
            secret=row["secret"],
            chips=int(row["chips"]),
            bank=int(row["bank"] or 0),
            origin=row["origin"],
            created_at=float(row["created_at"] or 0),
            last_active=float(row["last_active"] or 0),
            last_bonus=float(row["last_bonus"] or 0),
        )

    @staticmethod
    def _to_entry(row: sqlite3.Row) -> LedgerEntry:
        return LedgerEntry(
            entry_id=row["entry_id"],
            name=row["name"],
            kind=row["kind"],
            stake=int(row["stake"]),
            payout=int(row["payout"] or 0),
            status=row["status"],
            created_at=float(row["created_at"] or 0),
            settled_at=float(row["settled_at"]) if row["settled_at"] is not None else None,
        )

    @staticmethod
    def _balance(conn: sqlite3.Connection, name: str) -> Optional[int]:
        row = conn.execute("SELECT chips FROM accounts WHERE name = ?", (name,)).fetchone()
        return int(row["chips"]) if row else None

    # ---------------- accounts ----------------
    def get_account(self, name: str) -> Optional[Account]:
        row = self._with_conn(
            lambda conn: conn.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE name = ?", (name,)).fetchone()
        )
        return self._to_account(row) if row else None

    def find_account_by_origin(self, origin: str) -> Optional[Account]:
        row = self._with_conn(
            lambda conn: conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE origin = ? LIMIT 1", (origin,)
            ).fetchone()
        )
        return self._to_account(row) if row else None

    def create_account(self, account: Account) -> bool:
        def _insert(conn):
            cur = conn.execute(
                f"""
                INSERT OR IGNORE INTO accounts ({_ACCOUNT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.name,
                    account.secret,
                    int(account.chips),
                    int(account.bank),
                    account.origin,
                    account.created_at,
                    account.last_active,
                    account.last_bonus,
                ),
            )
            return cur.rowcount == 1

        return bool(self._with_conn(_insert))

    def touch(self, name: str, now: float) -> None:
        self._with_conn(lambda conn: conn.execute("UPDATE accounts SET last_active = ? WHERE name = ?", (now, name)))

    def top_accounts(self, limit: int) -> List[Account]:
        rows = self._with_conn(
            lambda conn: conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts ORDER BY chips DESC, name ASC LIMIT ?", (int(limit),)
            ).fetchall()
        )
        return [self._to_account(row) for row in rows]

    # ---------------- ledger ----------------
    def get_entry(self, entry_id: str) -> Optional[LedgerEntry]:
        row = self._with_conn(
            lambda conn: conn.execute(f"SELECT {_ENTRY_COLUMNS} FROM ledger WHERE entry_id = ?", (entry_id,)).fetchone()
        )
        return self._to_entry(row) if row else None

    def _debit(self, conn: sqlite3.Connection, name: str, stake: int, credit: int, now: float) -> int:
        cur = conn.execute(
            """
            UPDATE accounts
            SET chips = MAX(0, chips - ? + ?), last_active = ?
            WHERE name = ? AND chips >= ?
            """,
            (stake, credit, now, name, stake),
        )
        if cur.rowcount == 0:
            balance = self._balance(conn, name)
            if balance is None:
                raise UnknownAccount()
            raise InsufficientFunds(balance=balance, required=stake)
        return self._balance(conn, name) or 0

    def reserve(self, name: str, entry_id: str, kind: str, stake: int, now: float) -> int:
        def _reserve(conn):
            conn.execute("BEGIN IMMEDIATE")
            balance = self._debit(conn, name, stake, 0, now)
            conn.execute(
                f"INSERT INTO ledger ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, 0, 'reserved', ?, NULL)",
                (entry_id, name, kind, stake, now),
            )
            return balance

        return int(self._with_conn(_reserve))

    def _close_entry(self, conn: sqlite3.Connection, entry_id: str, status: str, payout: int, now: float) -> str:
        row = conn.execute("SELECT name FROM ledger WHERE entry_id = ?", (entry_id,)).fetchone()
        cur = conn.execute(
            "UPDATE ledger SET status = ?, payout = ?, settled_at = ? WHERE entry_id = ? AND status = 'reserved'",
            (status, payout, now, entry_id),
        )
        if row is None or cur.rowcount == 0:
            raise AlreadySettled()
        return row["name"]

    def settle(self, entry_id: str, payout: int, now: float) -> Tuple[str, int]:
        def _settle(conn):
            conn.execute("BEGIN IMMEDIATE")
            name = self._close_entry(conn, entry_id, "settled", payout, now)
            conn.execute(
                "UPDATE accounts SET chips = MAX(0, chips + ?), last_active = ? WHERE name = ?",
                (payout, now, name),
            )
            return name, self._balance(conn, name) or 0

        return self._with_conn(_settle)

    def forfeit(self, entry_id: str, now: float) -> None:
        def _forfeit(conn):
            conn.execute("BEGIN IMMEDIATE")
            self._close_entry(conn, entry_id, "forfeited", 0, now)

        self._with_conn(_forfeit)

    def play(self, name: str, entry_id: str, kind: str, stake: int, payout: int, now: float) -> int:
        def _play(conn):
            conn.execute("BEGIN IMMEDIATE")
            balance = self._debit(conn, name, stake, payout, now)
            conn.execute(
                f"INSERT INTO ledger ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, 'settled', ?, ?)",
                (entry_id, name, kind, stake, payout, now, now),
            )
            return balance

        return int(self._with_conn(_play))

    def claim_bonus(self, name: str, entry_id: str, amount: int, interval: float, now: float) -> Tuple[bool, int]:
        def _claim(conn):
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                """
                UPDATE accounts
                SET chips = chips + ?, last_bonus = ?, last_active = ?
                WHERE name = ? AND COALESCE(last_bonus, 0) <= ?
                """,
                (amount, now, now, name, now - interval),
            )
            granted = cur.rowcount == 1
            if granted:
                conn.execute(
                    f"INSERT INTO ledger ({_ENTRY_COLUMNS}) VALUES (?, ?, 'bonus', 0, ?, 'settled', ?, ?)",
                    (entry_id, name, amount, now, now),
                )
            balance = self._balance(conn, name)
            if balance is None:
                raise UnknownAccount()
            return granted, balance

        return self._with_conn(_claim)


_DB_INSTANCE: Optional[Database] = None


def get_database(settings: Optional[Settings] = None) -> Database:
    global _DB_INSTANCE
    if _DB_INSTANCE is None:
        _DB_INSTANCE = Database.from_settings(settings)
        _DB_INSTANCE.initialize()
    return _DB_INSTANCE
