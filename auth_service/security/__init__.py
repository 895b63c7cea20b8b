"""Secret hashing, one-time codes, signed tokens and rate limiting."""
