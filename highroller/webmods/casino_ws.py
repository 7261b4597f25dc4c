from __future__ import annotations
from aiohttp import web, WSMsgType, WSCloseCode
import asyncio
import json
import logging
from highroller.inc.webserver import route
from highroller.inc.errors import InvalidRequest

log = logging.getLogger("highroller.webmods.casino_ws")

@route("GET", "/ws")
async def ws_casino(req: web.Request):
    engine = req.app["engine"]
    ws = web.WebSocketResponse(heartbeat=req.app["ws_heartbeat"])
    await ws.prepare(req)
    active = req.app["ws_active"]
    active.add(ws)
    session = engine.connect(ws.send_json, origin=req.remote)
    idle = engine.rules.idle_timeout
    try:
        while not ws.closed:
            try:
                msg = await asyncio.wait_for(ws.receive(), timeout=idle if idle > 0 else None)
            except asyncio.TimeoutError:
                log.info(f"[ws] closing idle connection {session.id} ({session.player})")
                await ws.close(code=WSCloseCode.POLICY_VIOLATION, message=b"idle timeout")
                break
            if msg.type == WSMsgType.TEXT:
                try:
                    payload = json.loads(msg.data or "")
                except ValueError:
                    await session.send(InvalidRequest("malformed JSON").to_message())
                    continue
                try:
                    await engine.dispatch(session, payload)
                except ConnectionResetError:
                    break
            elif msg.type == WSMsgType.BINARY:
                await session.send(InvalidRequest("binary frames are not supported").to_message())
            elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED, WSMsgType.ERROR):
                break
    finally:
        active.discard(ws)
        await engine.disconnect(session)
    return ws
