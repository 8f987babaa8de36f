"""Client-side rate limiting and canvas synchronization core."""
