# Ensures `from cutroom...` works when running pytest from a source checkout
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
PKG_DIR = ROOT / "backend"
if str(PKG_DIR) not in sys.path:
    sys.path.insert(0, str(PKG_DIR))

# Settings are read at import time; pin a hermetic test environment first
os.environ["APP_ENV"] = "test"
os.environ["STORAGE_BACKEND"] = "local"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("SMTP_HOST", None)
os.environ.pop("WORKER_URL_BASE", None)
os.environ.pop("SENTRY_DSN", None)
for _event in ("UPLOAD", "EDIT", "APPROVAL", "PUBLISH", "REJECTION"):
    os.environ.pop(f"NOTIFY_DEFAULT_{_event}", None)
