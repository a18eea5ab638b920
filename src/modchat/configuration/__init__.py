"""Configuration loading for Modchat."""
