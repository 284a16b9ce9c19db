"""Top-level package for poiscan: confidence intervals and limits on a parameter of interest."""

from importlib import metadata as _metadata

from . import core, io, limits, oracles

try:
    __version__ = _metadata.version("poi-scan")
except _metadata.PackageNotFoundError:  # pragma: no cover - during local usage
    __version__ = "0.0.0"

__all__ = [
    "__version__",
    "core",
    "io",
    "limits",
    "oracles",
]
