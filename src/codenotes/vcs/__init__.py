"""Version-control queries."""
