"""Image playground gateway service."""
