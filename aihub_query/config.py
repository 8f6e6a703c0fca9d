import os


QUERY_DB_URL = (
    os.environ.get("QUERY_DB_URL", None)
    or os.environ.get("DATABASE_URL", None)
    or "sqlite:///./data/aihub.db"
)

S3_ENDPOINT = os.environ.get("S3_ENDPOINT", None)
S3_ACCESS_KEY = os.environ.get("S3_ACCESS_KEY", None)
S3_SECRET_KEY = os.environ.get("S3_SECRET_KEY", None)
S3_BUCKET = os.environ.get("S3_BUCKET", "aihub-datasets")
S3_MAX_ATTEMPTS = int(os.environ.get("S3_MAX_ATTEMPTS", 3))

QUERY_TIMEOUT_SECONDS = float(os.environ.get("QUERY_TIMEOUT_SECONDS", 30))
MAX_RESULT_ROWS = int(os.environ.get("MAX_RESULT_ROWS", 10000))
MAX_DATASET_BYTES = int(os.environ.get("MAX_DATASET_BYTES", 100 * 1024 * 1024))
WORKSPACE_THREADS = int(os.environ.get("WORKSPACE_THREADS", 1))
WORKSPACE_MEMORY_LIMIT = os.environ.get("WORKSPACE_MEMORY_LIMIT", "512MB")

DEFAULT_HISTORY_LIMIT = int(os.environ.get("DEFAULT_HISTORY_LIMIT", 10))
MAX_HISTORY_LIMIT = 100
MAX_STRUCTURED_DATASETS = 100

LATENCY_BUCKETS = [
    1.0,
    5.0,
    10.0,
    50.0,
    100.0,
    500.0,
    1000.0,
    5000.0,
    10000.0,
    20000.0,
    30000.0,
    float("inf"),
]


def get_allowed_origins() -> list[str]:
    return os.environ.get("ALLOWED_ORIGINS", "*").split(",")


def get_jwt_verify_key() -> str | None:
    return os.environ.get("JWT_VERIFY_KEY", None)
