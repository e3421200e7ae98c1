# project/attendance_client/config.py
# ------------------------------------------------------------
# Client knobs. Every value can be overridden from the environment
# (or a local .env file); CLI flags override both.
# ------------------------------------------------------------

from __future__ import annotations
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ======= Backend =======
BACKEND_URL = os.getenv("BACKEND_URL", "http://127.0.0.1:5000")
REQUEST_TIMEOUT_S = float(os.getenv("REQUEST_TIMEOUT_S", "30"))

# ======= Camera =======
CAM_INDEX = int(os.getenv("CAM_INDEX", "0"))
CAP_WIDTH = int(os.getenv("CAP_WIDTH", "640"))
CAP_HEIGHT = int(os.getenv("CAP_HEIGHT", "480"))
TARGET_FPS = int(os.getenv("TARGET_FPS", "30"))
JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "92"))   # same default a browser canvas uses

# ======= Sampling =======
SAMPLE_INTERVAL_S = float(os.getenv("SAMPLE_INTERVAL_S", "1.0"))
MAX_CONSECUTIVE_FAILURES = int(os.getenv("MAX_CONSECUTIVE_FAILURES", "3"))

# ======= Selection =======
GROUPS = ["CS", "SE"]
SUBGROUPS = ["A", "B"]

# ======= Local state =======
DATA_DIR = Path(os.getenv("ATTENDANCE_DATA_DIR", str(Path.home() / ".attendance_client")))
SELECTION_JSON = DATA_DIR / "selection.json"
RECORD_FILENAME = "attendance.xlsx"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
