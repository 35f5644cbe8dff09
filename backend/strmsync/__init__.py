"""strmsync — mirrors a remote media index into local strm pointer files."""

__version__ = "0.1.0"
