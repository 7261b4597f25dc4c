# -------
# Imports
# -------
import os
import asyncio
import threading

# -------
# From imports
# -------
from pathlib import Path
from highroller.inc.settings import load_settings, get_data_dir

# predefine boolean
__initialized__ = False

# predefined vars
settings = rules = database = chat = engine = None
config_path = workingdir = data_dir = None

# Threading
thread_lock = threading.Lock()
threading.current_thread().name = 'HighRoller'

# Initialize module
def initialize(path=None):
    global __initialized__, settings, rules, database, chat, engine, config_path, workingdir, data_dir
    with thread_lock:
        if __initialized__:
            return True

        workingdir = Path(__file__).parent
        settings = load_settings(path) if path else load_settings()  # env overlays applied automatically
        config_path = settings.path
        data_dir = get_data_dir(settings)

        # logging resolves its file paths from highroller.settings
        import highroller.inc.logging as loch
        from highroller.inc.database import get_database
        from highroller.modules.chat import ChatLog
        from highroller.modules.engine import CasinoEngine
        from highroller.modules.rules import HouseRules

        rules = HouseRules.from_settings(settings)
        database = get_database(settings)
        chat_path = settings.get("SERVER.chat_path", "", str) or os.path.join(data_dir, "chat.json")
        chat = ChatLog.open(chat_path, rules.chat_retention)
        engine = CasinoEngine(database, rules, chat)

        loch.logger.info(f"[highroller] initialized (config {config_path}, data {data_dir})")
        __initialized__ = True
    return True

async def serve():
    from highroller.inc.webserver import ensure_webserver
    server = await ensure_webserver(engine, settings)
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()
