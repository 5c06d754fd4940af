"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the cache, job-lock and resilience layers.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for state management
- Key prefixes shared by every process that talks to the same Redis
"""

from enum import Enum

# ============================================================================
# Stage Identifiers (for structured logging)
# ============================================================================


class Stage(str, Enum):
    """
    Processing stages used as the ``stage`` field of log entries.

    Format: {PREFIX}_{DESCRIPTIVE_NAME}
    - PREFIX: short alphabetic tag of the subsystem (CACHE, LOCK, CRON, ...)
    - DESCRIPTIVE_NAME: clear, uppercase description with underscores

    Examples:
        log_stage(logger, Stage.LOCK_ACQUIRE, "Lock acquired", job_name="digest")
    """

    CACHE_INIT = "CACHE.0_INITIALIZATION"
    CACHE_LOOKUP = "CACHE.1_LOOKUP"
    CACHE_WRITE = "CACHE.2_WRITE"
    CACHE_INVALIDATE = "CACHE.3_INVALIDATE"
    CACHE_SWEEP = "CACHE.4_SWEEP"
    CACHE_FALLBACK = "CACHE.5_FALLBACK"

    LOCK_ACQUIRE = "LOCK.1_ACQUIRE"
    LOCK_RELEASE = "LOCK.2_RELEASE"

    CRON_START = "CRON.1_START"
    CRON_FINISH = "CRON.2_FINISH"

    RETRY = "R_RETRY_LOGIC"
    BATCH = "B_BATCH_PROCESSING"
    CIRCUIT_BREAKER = "CB_CIRCUIT_BREAKER"
    RATE_LIMITING = "RL_RATE_LIMITING"


# ============================================================================
# Circuit Breaker States
# ============================================================================


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    CLOSED: Normal operation, calls pass through
    OPEN: Failing fast, calls rejected without invoking the operation
    HALF_OPEN: Cool-down elapsed, the next call is let through as a probe
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# ============================================================================
# Cache Backends
# ============================================================================


class CacheBackendKind(str, Enum):
    """
    Cache backend selection.

    MEMORY: In-process TTL map only (single instance)
    REDIS: Redis primary with the in-process map as fallback and mirror
    """

    MEMORY = "memory"
    REDIS = "redis"


class CronStatus(str, Enum):
    """Terminal and intermediate states of a cron run, as written to the audit log."""

    STARTED = "started"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


# ============================================================================
# Cache TTLs (seconds)
# ============================================================================


class CacheTTL:
    """Standard TTLs for cached data."""

    SHORT = 30  # frequently changing data
    MEDIUM = 5 * 60  # moderately cached data
    LONG = 60 * 60  # stable data
    DAY = 24 * 60 * 60  # rarely changing data


class CacheNamespace(str, Enum):
    """Key namespaces for ``build_key``."""

    USER = "user"
    PRODUCT = "product"
    ANALYTICS = "analytics"
    API = "api"
    SESSION = "session"
    SEARCH = "search"
    CONFIG = "config"
    COMPUTED = "computed"


# ============================================================================
# Timing Defaults
# ============================================================================

# Memory cache
MEMORY_CACHE_MAX_SIZE = 10000  # Maximum entries in the in-process cache
MEMORY_CACHE_SWEEP_INTERVAL = 5 * 60  # Expired-entry sweep interval (seconds)

# Redis connection
REDIS_CONNECT_TIMEOUT = 5  # seconds
REDIS_MAX_RECONNECT_ATTEMPTS = 3
REDIS_SCAN_COUNT = 100  # keys per SCAN page

# Job lock
DEFAULT_LOCK_TTL = 5 * 60  # Lock self-expiry (seconds)
DEFAULT_LAST_RUN_TTL = 60 * 60  # Last-run record TTL when no skip window is given

# Retry settings
MAX_RETRIES = 3
RETRY_INITIAL_DELAY_MS = 1000
RETRY_MAX_DELAY_MS = 30000
RETRY_EXPONENTIAL_BASE = 2.0
RETRY_JITTER_RATIO = 0.3  # up to 30% of the base delay is added as jitter

# Batch settings
BATCH_CONCURRENCY = 5
BATCH_ITEM_RETRIES = 2

# Circuit breaker
CB_FAILURE_THRESHOLD = 5
CB_RESET_TIME_MS = 60000

# ============================================================================
# Redis Key Prefixes
# ============================================================================

REDIS_KEY_LOCK = "cron:lock"
REDIS_KEY_LAST_RUN = "cron:last-run"
REDIS_KEY_RATE_LIMIT = "ratelimit"

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_AUTHORIZATION = "authorization"
HEADER_API_KEY = "x-api-key"
HEADER_RATE_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_FORWARDED_FOR = "x-forwarded-for"
HEADER_REAL_IP = "x-real-ip"
HEADER_CF_CONNECTING_IP = "cf-connecting-ip"
HEADER_FINGERPRINT = "x-fingerprint"
