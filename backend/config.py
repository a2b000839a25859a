"""Application-wide configuration constants."""

import os
from pathlib import Path

# --- Identity ---
APP_ID = "just-send-v1"
CONFIG_DIR = Path(
    os.environ.get("JUSTSEND_CONFIG_DIR", str(Path.home() / ".justsend"))
)
os.makedirs(CONFIG_DIR, exist_ok=True)

# --- Networking ---
API_HOST = "127.0.0.1"
API_PORT = int(os.environ.get("JUSTSEND_API_PORT", "8765"))

RELAY_URL = os.environ.get("JUSTSEND_RELAY_URL", "ws://localhost:8080/ws")
RELAY_RETRY_INTERVAL = 2  # seconds
RELAY_MAX_RETRIES = 3

# Space separated, same format as the browser client's VITE_STUN_URLS
STUN_URLS = os.environ.get(
    "JUSTSEND_STUN_URLS", "stun:stun.l.google.com:19302"
).split()
CHANNEL_LABEL = "fileChannel"
CHANNEL_OPEN_TIMEOUT = 15  # seconds

# --- Pairing ---
CODE_LENGTH = 4

# --- Transfer ---
CHUNK_SIZE = 16 * 1024  # 16 KB
HIGH_WATER_MARK = 256 * 1024  # backpressure threshold
PROGRESS_INTERVAL = 0.2  # seconds
SIZE_TOLERANCE = 16 * 1024
DEFAULT_MIME = "application/octet-stream"
