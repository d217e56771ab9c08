"""Local record store: connection management and repositories."""
