import os

# Gunicorn Production Configuration
# The notification broker lives in process memory, so live pushes only
# reach streams held by the same worker. One worker with many threads keeps
# every stream on one broker; clients still reconcile with a full fetch.
workers = int(os.environ.get('GUNICORN_WORKERS', 1))
threads = int(os.environ.get('GUNICORN_THREADS', 32))
worker_class = 'gthread'

# Resilience
# Event streams stay open; the heartbeat keeps them under the timeout
timeout = 120
graceful_timeout = 30
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'       # Stdout
errorlog = '-'        # Stderr
loglevel = 'info'
capture_output = True
