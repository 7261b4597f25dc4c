from __future__ import annotations
from aiohttp import web
from highroller.inc.webserver import route
from highroller.inc.errors import CasinoError

@route("GET", "/healthz")
async def healthz(req: web.Request):
    engine = req.app["engine"]
    return web.json_response({"ok": True, "connections": len(engine.sessions)})

@route("GET", "/api/leaderboard")
async def leaderboard(req: web.Request):
    try:
        rows = await req.app["engine"].leaderboard()
    except CasinoError as exc:
        return web.json_response({"ok": False, "error": exc.reason}, status=503)
    return web.json_response({"ok": True, "leaderboard": rows})
