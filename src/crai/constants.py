"""Constants for crai."""

# Scoring defaults
DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_LLM_TIMEOUT = 60
DEFAULT_BACKOFF_BASE = 0.5
DEFAULT_BACKOFF_MAX = 8.0
DEFAULT_THRESHOLD = 0.3

# Diff defaults
DEFAULT_CONTEXT_LINES = 3
DEFAULT_BASE_BRANCH = "main"
DEFAULT_MAX_FILE_SIZE = 1_000_000

# Event stream capacity before the oldest events are dropped
DEFAULT_EVENT_BUFFER = 256

DEFAULT_CONFIG_FILE = "crai.yml"

# Grace period for a terminated provider subprocess before it is killed
PROCESS_TERMINATE_GRACE = 5.0

LOCK_FILE_PATTERNS = (
    "*.lock",
    "package-lock.json",
    "npm-shrinkwrap.json",
    "pnpm-lock.yaml",
    "go.sum",
    "*.lockb",
)

GENERATED_FILE_PATTERNS = (
    "*.generated.*",
    "**/generated/**",
    "**/vendor/**",
    "*.min.js",
    "*.min.css",
    "*.map",
    "*.pb.go",
    "*_pb2.py",
    "*_pb2_grpc.py",
)

GENERATED_MARKERS = (
    "@generated",
    "DO NOT EDIT",
    "Code generated by",
    "auto-generated",
)

IMPORT_PATTERNS = {
    "rust": [r"^\s*use\s+", r"^\s*(pub\s+)?mod\s+\w+;"],
    "python": [r"^\s*import\s+", r"^\s*from\s+\S+\s+import\s+"],
    "javascript": [r"^\s*import\s+.+\s+from\s+", r"^\s*const\s+.+=\s*require\(", r"^\s*export\s+\{"],
    "typescript": [r"^\s*import\s+.+\s+from\s+", r"^\s*import\s+type\s+", r"^\s*export\s+\{"],
    "go": [r"^\s*import\s+"],
    "java": [r"^\s*import\s+", r"^\s*package\s+"],
}

# Grouped import declarations; every line up to the closing paren is an import
IMPORT_BLOCK_OPENERS = {
    "go": r"^\s*import\s*\(\s*$",
}
IMPORT_BLOCK_CLOSER = r"^\s*\)\s*$"

# Environment variable names forwarded to provider backends
ENV_VARS_TO_PASS = [
    # Anthropic/Claude
    "ANTHROPIC_AUTH_TOKEN",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "API_TIMEOUT_MS",
    "CLAUDE_CODE_DISABLE_NONESSENTIAL_TRAFFIC",
    # Google/Gemini
    "GOOGLE_API_KEY",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "GEMINI_API_KEY",
]

# Diff text included in a single summary prompt
SUMMARY_MAX_DIFF_CHARS = 60_000
