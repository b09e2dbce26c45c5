"""Environment-variable configuration loader.

Every setting is read from a ``KUBEXPLORER_*`` variable.  Numeric values are
clamped into their allowed range rather than rejected; malformed values for
validated fields raise ``ValueError`` so a bad deployment fails at startup.

    KUBEXPLORER_DEBUG                       bool   (``DEBUG`` is also honoured)
    KUBEXPLORER_CATALOG_TTL                 int    seconds, 0..86400
    KUBEXPLORER_NAMESPACE_TTL               int    seconds, 0..86400
    KUBEXPLORER_COUNT_TIMEOUT               float  seconds, 0.5..60
    KUBEXPLORER_COUNT_PAGE_SIZE             int    1..10000
    KUBEXPLORER_COUNT_CONCURRENCY           int    1..64
    KUBEXPLORER_DENY_LIST                   comma-separated resource names
    KUBEXPLORER_EXPECTED_DENIAL_STATUSES    comma-separated HTTP statuses
    KUBEXPLORER_PROGRESS_ENABLED            bool
    KUBEXPLORER_PROGRESS_VERBOSE            bool
    KUBEXPLORER_PROGRESS_BUFFER             int    1..10000
    KUBEXPLORER_PROGRESS_PUT_TIMEOUT        float  seconds, 0..5
    KUBEXPLORER_PROGRESS_INTERVAL           int    1..1000
    KUBEXPLORER_KUBECONFIG                  path
    KUBEXPLORER_KUBE_CONTEXT                context name
    KUBEXPLORER_REQUEST_TIMEOUT             float  seconds, 1..300
    KUBEXPLORER_API_PORT                    int    1024..65535
    KUBEXPLORER_LOG_LEVEL                   debug|info|warning|error
"""

from __future__ import annotations

import os

from kubexplorer.models.config import (
    DEFAULT_DENY_LIST,
    DEFAULT_EXPECTED_DENIAL_STATUSES,
    APIConfig,
    CacheConfig,
    ClusterConfig,
    CountConfig,
    ExplorerConfig,
    LogConfig,
    ProgressConfig,
)

_PREFIX = "KUBEXPLORER_"
_TRUTHY = frozenset({"true", "1", "yes", "on"})
_VALID_LOG_LEVELS = frozenset({"debug", "info", "warning", "error"})


def load_config() -> ExplorerConfig:
    """Build an :class:`ExplorerConfig` from the current environment."""
    debug = _env_bool("DEBUG", default=False) or _raw_bool(os.environ.get("DEBUG"))

    log_level = _env_str("LOG_LEVEL", "debug" if debug else "info").lower()
    if log_level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level {log_level!r}; expected one of {sorted(_VALID_LOG_LEVELS)}")

    return ExplorerConfig(
        debug=debug,
        cache=CacheConfig(
            catalog_ttl_seconds=_env_int("CATALOG_TTL", 300, 0, 86_400),
            namespace_ttl_seconds=_env_int("NAMESPACE_TTL", 300, 0, 86_400),
        ),
        count=CountConfig(
            timeout_seconds=_env_float("COUNT_TIMEOUT", 3.0, 0.5, 60.0),
            page_size=_env_int("COUNT_PAGE_SIZE", 500, 1, 10_000),
            concurrency=_env_int("COUNT_CONCURRENCY", 8, 1, 64),
            deny_list=_env_list("DENY_LIST", DEFAULT_DENY_LIST),
            expected_denial_statuses=_env_statuses("EXPECTED_DENIAL_STATUSES", DEFAULT_EXPECTED_DENIAL_STATUSES),
        ),
        progress=ProgressConfig(
            enabled=_env_bool("PROGRESS_ENABLED", default=True),
            verbose=_env_bool("PROGRESS_VERBOSE", default=debug),
            buffer_size=_env_int("PROGRESS_BUFFER", 100, 1, 10_000),
            put_timeout_seconds=_env_float("PROGRESS_PUT_TIMEOUT", 0.1, 0.0, 5.0),
            report_interval=_env_int("PROGRESS_INTERVAL", 10, 1, 1_000),
        ),
        cluster=ClusterConfig(
            kubeconfig=_env_str("KUBECONFIG", ""),
            context=_env_str("KUBE_CONTEXT", ""),
            request_timeout_seconds=_env_float("REQUEST_TIMEOUT", 30.0, 1.0, 300.0),
        ),
        api=APIConfig(port=_env_int("API_PORT", 8080, 1024, 65_535)),
        log=LogConfig(level=log_level),
    )


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    return os.environ.get(_PREFIX + name, default).strip()


def _raw_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    return _raw_bool(raw)


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = os.environ.get(_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_PREFIX + name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = os.environ.get(_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid number for {_PREFIX + name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    return tuple(item.strip().lower() for item in raw.split(",") if item.strip())


def _env_statuses(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.environ.get(_PREFIX + name)
    if raw is None:
        return default
    statuses: list[int] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if not item.isdigit() or not 400 <= int(item) <= 599:
            raise ValueError(f"Invalid HTTP status in {_PREFIX + name}: {item!r}")
        statuses.append(int(item))
    return tuple(statuses)
