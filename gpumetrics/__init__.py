"""Collect GPU, switch, link and CPU metrics and serve them for Prometheus."""

__version__ = "0.1.0"