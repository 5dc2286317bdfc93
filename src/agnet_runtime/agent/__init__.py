"""Reference agent subprocess."""
