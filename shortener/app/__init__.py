"""URL shortener application package."""
