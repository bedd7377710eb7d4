import os

NODE_API_URL = os.environ.get("NODE_API_URL", "https://nodes.amadeus.bot/api").rstrip("/")
NODE_WS_URL = os.environ.get("NODE_WS_URL", "wss://nodes.amadeus.bot/ws/rpc")
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "10"))

# Minimum spacing between two websocket connection attempts
RECONNECT_FLOOR_SECONDS = float(os.environ.get("RECONNECT_FLOOR_SECONDS", "10"))
WS_HEARTBEAT = float(os.environ.get("WS_HEARTBEAT", "30"))

HOME_WINDOW = int(os.environ.get("HOME_WINDOW", "10"))
LIST_WINDOW = int(os.environ.get("LIST_WINDOW", "50"))
LIVE_BUFFER_SIZE = int(os.environ.get("LIVE_BUFFER_SIZE", "50"))
DEFAULT_PAGE_SIZE = int(os.environ.get("DEFAULT_PAGE_SIZE", "20"))
MAX_TXS_PER_BLOCK = 5
STATS_POLL_INTERVAL = float(os.environ.get("STATS_POLL_INTERVAL", "15"))

PFLOPS_DATA_FILE = os.environ.get("PFLOPS_DATA_FILE", "pflops_data.json")
PFLOPS_MAX_ENTRIES = int(os.environ.get("PFLOPS_MAX_ENTRIES", "720"))  # 30 days hourly

BLOCKS_PER_EPOCH = 100_000
SLOT_DURATION_MS = 500
REFERENCE_SLOT = 29806536
REFERENCE_SLOT_TIME = "2025-09-17T20:41:58"
ATOMIC_UNITS = 10 ** 9
DEFAULT_SYMBOL = "AMA"

# Lengths used to classify free-text search input
HASH_LENGTHS = (64, 44)
ADDRESS_LENGTHS = (98, 48, 66)

WEB_HOST = os.environ.get("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.environ.get("WEB_PORT", "8080"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("LOG_FILE") or None
LOG_STRUCTURED = os.environ.get("LOG_STRUCTURED", "true").lower() == "true"
