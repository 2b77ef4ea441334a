STATE_DIR_NAME = ".kanban"
BOARD_FILE = "board.yaml"
BOARD_LOCK_FILE = "board.lock"
CONFIG_FILE = "config.yaml"
LOCK_TIMEOUT = 30  # seconds

STORE_SCHEMA_VERSION = 1
EXPORT_VERSION = 1

POSITION_GAP = 1000
POSITION_EPSILON = 1e-6

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4000
DEFAULT_API_URL = f"http://{DEFAULT_HOST}:{DEFAULT_PORT}/api"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_LOG_LEVEL = "INFO"

ENV_API_URL = "KANBAN_API_URL"
ENV_PORT = "KANBAN_PORT"
ENV_LOG_LEVEL = "KANBAN_LOG_LEVEL"
ENV_PROJECT_DIR = "KANBAN_PROJECT_DIR"
