"""CRUD operations package.

- url.py: short URL operations
- analytics.py: statistics snapshot operations
"""

from shortener.app.db.crud.url import (
    alias_exists,
    delete_url,
    get_resource_leaders,
    get_url,
    get_url_count,
    save_url,
)
from shortener.app.db.crud.analytics import (
    get_last_peak_rate,
    get_stats,
    reset_peak_rate,
    update_stats,
)

__all__ = [
    # URL operations
    "alias_exists",
    "delete_url",
    "get_resource_leaders",
    "get_url",
    "get_url_count",
    "save_url",
    # Analytics operations
    "get_last_peak_rate",
    "get_stats",
    "reset_peak_rate",
    "update_stats",
]
