"""Model API clients."""
