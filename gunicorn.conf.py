"""
Gunicorn configuration for nodedash production deployment
"""
import os

# Server socket
bind = f"0.0.0.0:{os.environ.get('PORT', '4000')}"
backlog = 2048

# One worker process: the control plane owns process-wide state
# (live node config, event stream, scheduler, per-container locks)
workers = 1
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', '8'))
timeout = 60
keepalive = 2

# Logging
accesslog = '-'  # Log to stdout
errorlog = '-'   # Log to stderr
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(L)s'

# Process naming
proc_name = 'nodedash'

# Server mechanics
daemon = False
pidfile = None
umask = 0

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    """Called just after the server is started."""
    print(f"nodedash is ready. Listening on {bind}")


def worker_exit(server, worker):
    """Stop background threads when the worker exits."""
    from nodedash.main import app, shutdown_runtime

    shutdown_runtime(app)
