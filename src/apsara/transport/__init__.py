"""WebSocket transport for the /live and /interactions paths."""
