"""
Gunicorn WSGI Server Configuration

Multi-worker process model for the front-end cache: every worker is an
independent process that builds its own cache settings at start-up and
coordinates with the other workers only through advisory locks on the cache
files. There is no shared in-memory state between workers.
"""

import multiprocessing
import os

# =============================================================================
# SERVER SOCKET CONFIGURATION
# =============================================================================

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")

backlog = 2048

# =============================================================================
# WORKER PROCESS CONFIGURATION
# =============================================================================

# (2 * CPU_COUNT) + 1, between 2 and 8
workers = int(os.getenv("GUNICORN_WORKERS", max(2, min(8, (2 * multiprocessing.cpu_count()) + 1))))

worker_class = "sync"

# Maximum requests per worker before restart
max_requests = 1000
max_requests_jitter = 500

# Each worker loads the settings overrides file when it starts
preload_app = False

# =============================================================================
# TIMEOUT CONFIGURATION
# =============================================================================

timeout = 120
keepalive = 5
graceful_timeout = 30

# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
capture_output = True

proc_name = "frontend-cache"

raw_env = [
    "FLASK_APP=app:application"
]


def on_starting(server):
    server.log.info("Gunicorn master process starting with %d workers", workers)


def post_fork(server, worker):
    worker.log.info("Worker %s ready to handle requests", worker.pid)


def worker_abort(worker):
    worker.log.error("Worker %s aborted", worker.pid)


def post_request(worker, req, environ, resp):
    worker.log.debug(
        "Request processed: %s %s - %s",
        environ.get('REQUEST_METHOD'),
        environ.get('PATH_INFO'),
        resp.status
    )


# =============================================================================
# DEVELOPMENT CONFIGURATION OVERRIDES
# =============================================================================

if os.getenv("FLASK_ENV") == "development":
    workers = 1
    timeout = 0
    reload = True
    loglevel = "debug"
