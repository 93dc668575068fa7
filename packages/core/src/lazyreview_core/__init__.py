"""Configuration, review models and provider adapters for LazyReview."""
