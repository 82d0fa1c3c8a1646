"""Shared data layer for community bot services."""
