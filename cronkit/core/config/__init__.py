"""
Configuration Module

Centralized, type-safe configuration management.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: System-wide constants, enums, key prefixes and headers

Usage:
------
```python
from cronkit.core.config import get_settings
from cronkit.core.config.constants import CacheTTL, CircuitState

settings = get_settings()
redis_url = settings.cache.REDIS_URL
```

Environment Variables:
---------------------
```bash
REDIS_URL=redis://localhost:6379/0   # omit for memory-only mode
CRON_SECRET=...
CRON_API_KEY=...
CB_FAILURE_THRESHOLD=5
LOG_LEVEL=INFO
LOG_FORMAT=json
```
"""

from cronkit.core.config.constants import (
    CacheBackendKind,
    CacheNamespace,
    CacheTTL,
    CircuitState,
    CronStatus,
    Stage,
)
from cronkit.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    "reload_settings",
    # Enums
    "Stage",
    "CircuitState",
    "CacheBackendKind",
    "CacheNamespace",
    "CacheTTL",
    "CronStatus",
]
