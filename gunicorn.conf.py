import os

wsgi_app = "fleet_permits.main:app"
bind = f"0.0.0.0:{os.getenv('PORT', 8000)}"
# Allocation locks are per process
workers = int(os.getenv('WEB_CONCURRENCY', 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 1000
max_requests_jitter = 100
timeout = int(os.getenv('GUNICORN_TIMEOUT', 60))
