import os
import tempfile

# log files are opened when highroller.inc.logging is first imported
_LOG_DIR = tempfile.mkdtemp(prefix="highroller-tests-")
os.environ.setdefault("HIGHROLLER_LOG_PATH", os.path.join(_LOG_DIR, "casino.log"))
os.environ.setdefault("HIGHROLLER_LEDGER_LOG_PATH", os.path.join(_LOG_DIR, "ledger.log"))
