"""
Gunicorn config. Serve with: gunicorn -c gunicorn_config.py app:app

post_fork prunes expired rows from the persistent geo cache (when
QUOTE_CACHE_PATH is set) so each worker starts against a compact table.
"""

import logging
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"
workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
# Two billed Google calls per quote run in a small thread pool; keep
# headroom above the provider timeout plus one retry.
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))


def post_fork(server, worker):
    """Purge expired geo cache entries in this gunicorn worker process."""
    path = os.environ.get("QUOTE_CACHE_PATH")
    if not path:
        return
    logger = logging.getLogger("gunicorn.error")
    try:
        from cache_store import SQLiteCache
        removed = SQLiteCache(path).purge_expired()
        logger.info("Purged %d expired geo cache entries from %s", removed, path)
    except Exception:
        logger.exception("Failed to purge geo cache at %s", path)
