"""Adapters for platforms, webhook authentication, reasoning strategies and storage."""
