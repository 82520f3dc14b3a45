"""querybench: load-test query endpoints and report precise latency statistics."""

__version__ = "0.1.0"
