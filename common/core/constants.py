from enum import Enum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class LockProviderType(str, Enum):
    """Distributed lock backends."""

    REDIS = "redis"
    MEMORY = "memory"  # Single process only (local dev, tests)


class UsageProviderType(str, Enum):
    """Where resource usage counters are read from."""

    HTTP = "http"
    STATIC = "static"
