"""cine-admin - realtime-synchronized administration client for a cinema chain."""

__version__ = "0.1.0"
