"""Live Session Relay — one client WebSocket bridged to one Live session."""
