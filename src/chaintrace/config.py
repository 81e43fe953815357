import os


class EngineConfig:
    """Trace engine configuration from environment with defaults."""

    MAX_TRACE_DEPTH = int(os.getenv("CHAINTRACE_MAX_DEPTH", "10"))
    DEFAULT_DEPTH = int(os.getenv("CHAINTRACE_DEFAULT_DEPTH", "3"))

    # Per-node sampling caps
    ACTIVITY_LIMIT = int(os.getenv("CHAINTRACE_ACTIVITY_LIMIT", "15"))
    TOKEN_TRANSFER_LIMIT = int(os.getenv("CHAINTRACE_TOKEN_TRANSFER_LIMIT", "20"))
    TOKEN_SAMPLE_LIMIT = int(os.getenv("CHAINTRACE_TOKEN_SAMPLE_LIMIT", "3"))
    BATCH_SIZE = int(os.getenv("CHAINTRACE_BATCH_SIZE", "5"))

    CACHE_TTL_SECONDS = float(os.getenv("CHAINTRACE_CACHE_TTL_SECONDS", "300"))
    CACHE_MAX_ENTRIES = int(os.getenv("CHAINTRACE_CACHE_MAX_ENTRIES", "1000"))

    WORKER_CONCURRENCY = int(os.getenv("CHAINTRACE_WORKER_CONCURRENCY", "3"))
    JOB_MAX_ATTEMPTS = int(os.getenv("CHAINTRACE_JOB_MAX_ATTEMPTS", "1"))
    JOB_RETRY_BACKOFF = float(os.getenv("CHAINTRACE_JOB_RETRY_BACKOFF", "2.0"))

    # Finished jobs kept in memory, newest first
    JOB_KEEP_COMPLETED = int(os.getenv("CHAINTRACE_JOB_KEEP_COMPLETED", "100"))
    JOB_KEEP_FAILED = int(os.getenv("CHAINTRACE_JOB_KEEP_FAILED", "50"))

    HTTP_TIMEOUT = float(os.getenv("CHAINTRACE_HTTP_TIMEOUT", "10"))
    HTTP_MAX_RETRIES = int(os.getenv("CHAINTRACE_HTTP_MAX_RETRIES", "3"))

    SUSPICIOUS_THRESHOLD = int(os.getenv("CHAINTRACE_SUSPICIOUS_THRESHOLD", "50"))

    LOG_LEVEL = os.getenv("CHAINTRACE_LOG_LEVEL", "INFO").upper()
