"""Services package for the shortener.

- rate_limiter: global sliding-window admission with hysteresis
- scheduler: in-process cron for background jobs
- jobs: daily peak reset and periodic analytics
- stats: statistics snapshots
- storage: session-owning storage for background jobs
"""
