"""WebSocket server: connection registry, protocol handler, presence monitor and app."""
