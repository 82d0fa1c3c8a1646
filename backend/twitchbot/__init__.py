"""Twitch chat bot service."""
