"""Gunicorn configuration for the stock count service."""
import os

# Network binding configuration. Defaults are suitable for containerized deployments.
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:5000")

# Each worker handles whole requests; no state is shared between them.
workers = int(os.getenv("GUNICORN_WORKERS", "2"))

# Field devices on slow links can hold a request open for a while.
timeout = int(os.getenv("GUNICORN_TIMEOUT", "30"))

# Log to stdout/stderr by default so container orchestrators can capture logs.
accesslog = os.getenv("GUNICORN_ACCESS_LOGFILE", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOGFILE", "-")

forwarded_allow_ips = os.getenv("GUNICORN_FORWARDED_ALLOW_IPS", "*")

wsgi_app = "app:app"
