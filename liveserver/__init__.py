"""Static file server with HTML live-reload injection and a WebSocket control plane."""

__version__ = "0.1.0"
