"""URL shortener service."""
