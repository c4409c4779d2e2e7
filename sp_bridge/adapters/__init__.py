"""Adapters for external systems: Discord (source) and AT Protocol (destination)."""
