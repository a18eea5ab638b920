"""
Modchat - Real-Time Moderated Chat Server

Modchat serves a single moderated chat room over WebSocket. Messages from
regular users wait in an approval queue unless direct mode is on, while the
administrator controls chat-wide state and an AI assistant proposes
moderation actions for the administrator to confirm.

Core Components:

- **Moderation Store**: Authoritative in-memory state with debounced
  persistence to memory, JSON file, SQLite or a GitHub repository
- **Protocol Handler**: Validates, authorizes and applies client events, then
  fans the results out to every connection
- **Presence Monitor**: Heartbeat reaping of dead sockets and closure-timer
  enforcement
- **Moderation Bot**: Keyword or OpenAI compatible provider producing
  propose-then-confirm action plans

Usage:
    from modchat.main import main
    main()  # Starts the server
"""

__version__ = "0.1.0"
