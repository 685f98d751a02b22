"""Mission Control: session status fusion, reply mirroring, and stalled-run recovery."""

__version__ = "0.3.0"

__all__ = ["__version__"]
