"""Configuration data structures.

Populated once at process start by :func:`kubexplorer.config.load_config`;
nothing reads the environment after that.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

DEFAULT_DENY_LIST: tuple[str, ...] = (
    "bindings",
    "localsubjectaccessreviews",
    "selfsubjectaccessreviews",
    "selfsubjectrulesreviews",
    "subjectaccessreviews",
    "tokenrequests",
    "uploadtokenrequests",
)

DEFAULT_EXPECTED_DENIAL_STATUSES: tuple[int, ...] = (403, 405)


@dataclass
class CacheConfig:
    catalog_ttl_seconds: int = 300
    namespace_ttl_seconds: int = 300

    @property
    def catalog_ttl(self) -> timedelta:
        return timedelta(seconds=self.catalog_ttl_seconds)

    @property
    def namespace_ttl(self) -> timedelta:
        return timedelta(seconds=self.namespace_ttl_seconds)


@dataclass
class CountConfig:
    timeout_seconds: float = 3.0
    page_size: int = 500
    concurrency: int = 8
    deny_list: tuple[str, ...] = DEFAULT_DENY_LIST
    expected_denial_statuses: tuple[int, ...] = DEFAULT_EXPECTED_DENIAL_STATUSES


@dataclass
class ProgressConfig:
    enabled: bool = True
    verbose: bool = False
    buffer_size: int = 100
    put_timeout_seconds: float = 0.1
    report_interval: int = 10


@dataclass
class ClusterConfig:
    kubeconfig: str = ""
    context: str = ""
    request_timeout_seconds: float = 30.0


@dataclass
class APIConfig:
    port: int = 8080


@dataclass
class LogConfig:
    level: str = "info"


@dataclass
class ExplorerConfig:
    debug: bool = False
    cache: CacheConfig = field(default_factory=CacheConfig)
    count: CountConfig = field(default_factory=CountConfig)
    progress: ProgressConfig = field(default_factory=ProgressConfig)
    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    api: APIConfig = field(default_factory=APIConfig)
    log: LogConfig = field(default_factory=LogConfig)
