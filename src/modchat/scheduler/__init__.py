"""
Background scheduling primitives for Modchat.

- **debounced_saver.py**: coalesces bursts of save requests into one write.
- **periodic_scheduler.py**: fixed-interval tick runner (heartbeat, closure timer).
- **flash_expiry_scheduler.py**: heap-based one-shot jobs that delete flash
  messages when their duration elapses.
"""
