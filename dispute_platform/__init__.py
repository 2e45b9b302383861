"""Commission dispute platform."""
