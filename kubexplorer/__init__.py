"""kubexplorer - Kubernetes namespace resource explorer."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubexplorer")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
