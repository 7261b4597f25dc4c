# highroller/inc/settings.py
from __future__ import annotations
import os, json
from pathlib import Path
from configobj import ConfigObj  # keeps unknown keys, preserves case, nested sections
from typing import Any, Callable, Dict, Optional

CFG_PATH_DEFAULT = Path(os.getenv("HIGHROLLER_CONFIG") or Path(os.getenv("HOME", "")) / ".config" / "highroller.ini")

_PREFIXES = {
    "HIGHROLLER_INT__": "INT",
    "HIGHROLLER_BOOL__": "BOOL",
    "HIGHROLLER_JSON__": "JSON",
    "HIGHROLLER_FILE__": "FILE",
    "HIGHROLLER__": "STR",
}

# --------- helpers ---------
def _coerce_bool(v: Any, default: bool=False) -> bool:
    if isinstance(v, bool): return v
    if v is None: return default
    s = str(v).strip().lower()
    return s in ("1", "true", "yes", "on")

def _coerce_int(v: Any, default: int=0) -> int:
    try: return int(str(v).strip())
    except (TypeError, ValueError): return default

def _coerce_float(v: Any, default: float=0.0) -> float:
    try: return float(str(v).strip())
    except (TypeError, ValueError): return default

def _parse_json(v, default=None):
    if v is None:
        return default
    # ConfigObj already splits comma lists
    if isinstance(v, (list, dict)):
        return v
    s = str(v).strip()
    if not s:
        return default
    try:
        return json.loads(s)
    except ValueError:
        return default

def _clean_key_name(k: str) -> str:
    # drop zero-width/control chars
    bad = {0x200B, 0x200C, 0x200D, 0xFEFF}
    return "".join(ch for ch in k if ord(ch) >= 32 and ord(ch) != 127 and ord(ch) not in bad).strip()

def _normalize_section_keys(sec: Dict[str, Any]):
    for k in list(sec.keys()):
        nk = _clean_key_name(k)
        if nk != k:
            sec[nk] = sec.pop(k)
        if isinstance(sec[nk], dict):
            _normalize_section_keys(sec[nk])

def _env_overrides(cfg: ConfigObj, environ: Optional[Dict[str, str]] = None):
    """
    Overlay env vars onto config without needing code for each new key.
    Patterns:
      HIGHROLLER__Section__key=val          (string)
      HIGHROLLER_INT__Section__key=123      (int)
      HIGHROLLER_BOOL__Section__key=true    (bool)
      HIGHROLLER_JSON__Section__key=[...]   (json array/object or primitive)
      HIGHROLLER_FILE__Section__key=/path   (contents of file, trimmed)
    """
    env = os.environ if environ is None else environ
    for name, val in env.items():
        kind = None
        rest = ""
        for prefix, k in _PREFIXES.items():
            if name.startswith(prefix):
                kind, rest = k, name[len(prefix):]
                break
        if kind is None:
            continue

        parts = rest.split("__", 1)
        if len(parts) != 2:  # malformed
            continue
        sec, key = parts[0].strip(), parts[1].strip()
        if not sec or not key:
            continue

        if kind == "INT":
            value = _coerce_int(val, 0)
        elif kind == "BOOL":
            value = _coerce_bool(val, False)
        elif kind == "JSON":
            value = _parse_json(val, None)
        elif kind == "FILE":
            try:
                with open(val, "r", encoding="utf-8") as f:
                    value = f.read().strip()
            except OSError:
                continue
        else:
            value = val

        cfg.setdefault(sec, {})
        cfg[sec][key] = value

class Settings:
    """
    Dynamic, schema-optional settings:
      - Read INI once (no write-backs)
      - Normalize key names (no invisible junk)
      - Overlay environment variables (patterns above)
      - Helpers to parse types on-demand
    """
    def __init__(self, path: Path = CFG_PATH_DEFAULT, environ: Optional[Dict[str, str]] = None):
        self.path = Path(path)
        if self.path.exists():
            self._cfg = ConfigObj(str(self.path), encoding="utf-8")
        else:
            self._cfg = ConfigObj(encoding="utf-8")

        for secname, sec in list(self._cfg.items()):
            if isinstance(sec, dict):
                nk = _clean_key_name(secname)
                if nk != secname:
                    self._cfg[nk] = self._cfg.pop(secname)
                    secname = nk
                _normalize_section_keys(self._cfg[secname])

        _env_overrides(self._cfg, environ)

    def get(self, dotted: str, default: Any=None, cast: Optional[Callable[[Any], Any]]=None) -> Any:
        """
        settings.get("Section.key", default, cast=int/bool/float/"json" or custom)
        """
        if "." not in dotted:
            return default
        sec, key = dotted.split(".", 1)
        secmap = self._cfg.get(sec, {})
        val = secmap.get(key, default)
        if cast is None:
            return val
        if cast is bool:
            return _coerce_bool(val, bool(default) if isinstance(default, bool) else False)
        if cast is int:
            return _coerce_int(val, int(default) if isinstance(default, int) else 0)
        if cast is float:
            return _coerce_float(val, float(default) if isinstance(default, (int, float)) else 0.0)
        if cast == "json":
            return _parse_json(val, default)
        try:
            return cast(val)
        except (TypeError, ValueError):
            return default

    def require(self, section: str, *keys: str, allow_empty: bool=True):
        """Fail loud if section/keys missing."""
        if section not in self._cfg:
            raise RuntimeError(f"Config error: missing [{section}] in {self.path}")
        sec = self._cfg[section]
        missing = [k for k in keys if k not in sec]
        empties = []
        if not allow_empty:
            empties = [k for k in keys if k in sec and str(sec.get(k) or "").strip() == ""]
        if missing or empties:
            msg = [f"Config error in [{section}] ({self.path}):"]
            if missing:
                msg.append(f"  - missing keys: {', '.join(missing)}")
            if empties:
                msg.append(f"  - empty keys: {', '.join(empties)}")
            raise RuntimeError("\n".join(msg))

def load_settings(path: Path = CFG_PATH_DEFAULT, environ: Optional[Dict[str, str]] = None) -> Settings:
    return Settings(path, environ)

def get_data_dir(settings: Optional[Settings] = None) -> str:
    """
    Resolve the data directory.

    Priority: HIGHROLLER_DATA_DIR, settings SERVER.data_dir, cwd/.highroller.
    The directory is created if necessary.
    """
    base = os.getenv("HIGHROLLER_DATA_DIR")
    if not base and settings is not None:
        base = settings.get("SERVER.data_dir", None, str)
    if not base:
        base = os.path.join(os.getcwd(), ".highroller")
    os.makedirs(base, exist_ok=True)
    return base
