# highroller/inc/webserver.py
from __future__ import annotations
import importlib, pkgutil, logging
from dataclasses import dataclass
from typing import Callable, Dict, Any, List, Set, Optional
from aiohttp import web, WSCloseCode
from aiohttp.http_exceptions import InvalidURLError
import highroller
from highroller.inc.settings import Settings

log = logging.getLogger("highroller.web")

@dataclass
class APIRoute:
    method: str
    path: str
    handler: Callable

_registry: List[APIRoute] = []

def route(method: str, path: str):
    method = method.upper()
    def deco(fn):
        _registry.append(APIRoute(method, path, fn))
        return fn
    return deco

def _cfg(settings: Optional[Settings]) -> Dict[str, Any]:
    st = settings if settings is not None else getattr(highroller, "settings", None)
    if st is None:
        return {"host": "0.0.0.0", "port": 3000, "heartbeat": 30.0, "cors_origin": "*"}
    return {
        "host": st.get("WEB.listen_host", "0.0.0.0"),
        "port": st.get("WEB.listen_port", 3000, int),
        "heartbeat": st.get("WEB.ws_heartbeat", 30.0, float),
        "cors_origin": st.get("WEB.cors_origin", "*"),
    }

class DynamicWebServer:
    def __init__(self, engine, settings: Optional[Settings] = None):
        self.engine = engine
        self.app = web.Application(middlewares=[self._cors_mw])
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._registered: Set[tuple] = set()
        self.ws_active: Set[web.WebSocketResponse] = set()
        self._cfg = _cfg(settings)

        self.app["engine"] = engine
        self.app["ws_active"] = self.ws_active
        self.app["ws_heartbeat"] = self._cfg["heartbeat"]
        self.app.on_shutdown.append(self._on_shutdown)

    def _attach(self, route_obj: APIRoute, handler):
        # prevent duplicates when the registry is wired twice
        key = (route_obj.method, route_obj.path)
        if key in self._registered:
            return
        self._registered.add(key)
        self.app.router.add_route(key[0], key[1], handler)

    # ---------- CORS ----------
    @web.middleware
    async def _cors_mw(self, request: web.Request, handler):
        if request.method == "OPTIONS":
            resp = web.Response()
        else:
            try:
                resp = await handler(request)
            except InvalidURLError:
                return web.Response(status=400, text="bad request")
        if isinstance(resp, web.WebSocketResponse):
            return resp
        resp.headers["Access-Control-Allow-Origin"] = self._cfg["cors_origin"]
        resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
        resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        return resp

    # ---------- Boot / Stop ----------
    def build_app(self) -> web.Application:
        self._load_modules()
        self._wire_routes()
        return self.app

    async def start(self):
        self.build_app()
        host, port = self._cfg["host"], self._cfg["port"]
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        log.info(f"[web] listening on {host}:{port}")

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner, self._site = None, None
        log.info("[web] stopped")

    async def _on_shutdown(self, app: web.Application):
        for ws in list(self.ws_active):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"server shutdown")
        await self.engine.close()

    # ---------- Loader ----------
    def _load_modules(self):
        import highroller.webmods as pkg
        base = pkg.__name__
        for modinfo in pkgutil.iter_modules(pkg.__path__):
            fullname = f"{base}.{modinfo.name}"
            importlib.import_module(fullname)
            log.debug(f"[web] loaded module {fullname}")

    def _wire_routes(self):
        for r in _registry:
            self._attach(r, r.handler)

_server: Optional[DynamicWebServer] = None

async def ensure_webserver(engine, settings: Optional[Settings] = None) -> DynamicWebServer:
    global _server
    if _server: return _server
    _server = DynamicWebServer(engine, settings)
    await _server.start()
    return _server
