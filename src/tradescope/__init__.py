"""tradescope - trade-data search, tariff resolution and metered compliance."""

from . import errors, tiers
from .version import __version__

__all__ = [
    "errors",
    "tiers",
    "__version__",
]
