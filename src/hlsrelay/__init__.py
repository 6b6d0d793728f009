"""HLS reverse proxy with playlist rewriting and abuse controls."""

__version__ = "0.1.0"
