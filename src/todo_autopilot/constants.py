"""Shared constants for todo-autopilot."""

STATE_DIR_NAME = ".autopilot"
CONFIG_FILE = "config.yaml"

DEFAULT_MAX_PARALLEL = 3
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 300.0
DEFAULT_PROBE_TEXT = "are you done?"

DEFAULT_STATUS_BUFFER_SIZE = 256
DEFAULT_STATUS_HISTORY_SIZE = 1000

# Closed sessions older than this are evicted from the orchestrator registry.
DEFAULT_SESSION_TTL_SECONDS = 3600.0

# Composite priority weights (dependency, value, complexity, risk).
PRIORITY_WEIGHTS = {
    "dependency": 0.4,
    "value": 0.3,
    "complexity": 0.2,
    "risk": 0.1,
}
DEPENDENCY_OUT_SHARE = 0.7
DEPENDENCY_IN_SHARE = 0.3
KEYWORD_STEP = 0.1
NEUTRAL_FACTOR = 0.5

FUZZY_MATCH_THRESHOLD = 0.6
ENTITY_EDGE_WEIGHT = 0.5
CATEGORY_EDGE_WEIGHT = 0.8

# Minutes per planning unit; the complexity factor scales it.
BASE_TASK_MINUTES = 15.0

NEEDS_INPUT_DETAIL = "needs-input"
NEGATION_WINDOW = 2
