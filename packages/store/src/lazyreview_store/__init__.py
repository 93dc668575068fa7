"""Local persistence for LazyReview: the offline action queue and the secret store."""
