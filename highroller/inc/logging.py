import highroller
import logging
import logging.handlers
import os

def _resolve_log_path(env_key: str, base_name: str) -> str:
    override = os.getenv(env_key)
    if override:
        return override
    settings = getattr(highroller, "settings", None)
    if settings is not None:
        base = settings.get("SERVER.data_dir", None)
        if base:
            return os.path.join(base, base_name)
    base = os.getenv("HIGHROLLER_DATA_DIR")
    if base:
        return os.path.join(base, base_name)
    return base_name

def _rotating_handler(path: str, max_bytes: int, backups: int) -> logging.Handler:
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        encoding='utf-8',
        maxBytes=max_bytes,
        backupCount=backups,
    )
    handler.setFormatter(formatter)
    return handler

dt_fmt = '%Y-%m-%d %H:%M:%S'
formatter = logging.Formatter('[{asctime}] [{levelname:<8}] {name}: {message}', dt_fmt, style='{')

logger = logging.getLogger('highroller')
logger.setLevel(logging.DEBUG)
logging.getLogger('aiohttp.access').setLevel(logging.WARNING)

log_path = _resolve_log_path("HIGHROLLER_LOG_PATH", "casino.log")
handler = _rotating_handler(log_path, 32 * 1024 * 1024, 5)  # 32 MiB x 5
logger.addHandler(handler)

# wallet movements get their own file; records still propagate to casino.log
ledger_logger = logging.getLogger('highroller.ledger')
ledger_log_path = os.getenv("HIGHROLLER_LEDGER_LOG_PATH") or os.path.join(os.path.dirname(log_path), "ledger.log")
ledger_handler = _rotating_handler(ledger_log_path, 16 * 1024 * 1024, 3)
ledger_logger.addHandler(ledger_handler)
