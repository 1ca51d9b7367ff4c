"""Utility functions for the shortener application."""

import secrets
import string
from urllib.parse import urlsplit

ALIAS_ALPHABET = string.digits + string.ascii_letters


def generate_alias(length: int = 6) -> str:
    """Generate a random alphanumeric alias.

    Examples:
        >>> len(generate_alias(8))
        8
    """
    return "".join(secrets.choice(ALIAS_ALPHABET) for _ in range(length))


def normalize_url(raw: str) -> str:
    """Strip whitespace and default to https when no scheme is given.

    Examples:
        >>> normalize_url(" example.com/path ")
        'https://example.com/path'
    """
    url = raw.strip()
    if "://" not in url:
        url = f"https://{url}"
    return url


def extract_resource(url: str) -> str:
    """Return the host a URL points at, lower-cased and without ``www.``.

    Examples:
        >>> extract_resource("https://www.Example.com/a/b")
        'example.com'
    """
    host = (urlsplit(normalize_url(url)).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host
