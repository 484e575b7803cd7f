"""Data models shared across the assistant."""
