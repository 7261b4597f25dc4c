# highroller/modules/leaderboard.py
from __future__ import annotations
import asyncio
from typing import Any, Dict, List

from highroller.inc.store import AccountStore


async def top_players(store: AccountStore, limit: int) -> List[Dict[str, Any]]:
    accounts = await asyncio.to_thread(store.top_accounts, limit)
    return [{"name": a.name, "balance": a.chips} for a in accounts]


def leaderboard_message(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {"type": "leaderboard_update", "leaderboard": rows}
