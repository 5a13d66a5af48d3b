"""Identity-provider token verification."""
