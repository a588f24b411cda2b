"""
Gunicorn config.

when_ready runs the post-deploy smoke test against localhost once the
server is accepting connections.  post_fork starts the upstream health
monitor thread in each worker process (caches and health windows are
per-process).
"""

import logging
import os
import threading
import time

logger = logging.getLogger("gunicorn.error")

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"
workers = int(os.environ.get("WEB_CONCURRENCY", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
# A deep analysis waits on the slowest of nine providers.
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))


def when_ready(server):
    """Run smoke test in a background thread once gunicorn is listening."""
    base_url = f"http://127.0.0.1:{os.environ.get('PORT', '8000')}"

    def _run_smoke():
        time.sleep(2)  # grace period for workers to finish forking
        try:
            from smoke_test import run_tests
            logger.info("Post-deploy smoke test starting against %s", base_url)
            if run_tests(base_url):
                logger.info("Post-deploy smoke test PASSED")
            else:
                logger.error("Post-deploy smoke test FAILED")
        except Exception:
            logger.exception("Post-deploy smoke test crashed")

    threading.Thread(target=_run_smoke, daemon=True).start()


def post_fork(server, worker):
    """Start the health monitor in this gunicorn worker process."""
    try:
        from health_monitor import start_monitor
        start_monitor()
    except Exception:
        logger.exception("Failed to start health monitor")
