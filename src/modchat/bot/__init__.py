"""AI moderation bot: providers, response parsing and proposals."""
