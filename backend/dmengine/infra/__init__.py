"""Infrastructure adapters: store, redis, retry, auth."""
