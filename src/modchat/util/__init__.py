"""
Utility functions and helpers for Modchat.

- **logger.py**: Centralized logging configuration with colored console output
  through prompt_toolkit, a per-session rotating log file, and suppression of
  chatty library loggers (aiohttp, openai, aiosqlite).

- **time_utils.py**: Millisecond epoch clock shared by the store, the protocol
  handler and the schedulers, plus formatting helpers for transcripts.
"""
