"""
Celery worker entry point.

Loads the Celery app and the migration import task from the API tree:

    celery -A main worker -Q migrations --loglevel=info --concurrency=2
"""
import os
import sys

# The API source is mounted at /api in the container; override for local runs.
API_DIR = os.environ.get("API_SOURCE_DIR", "/api")
sys.path.insert(0, API_DIR)

from tasks import celery_app  # noqa: E402

celery_app.autodiscover_tasks(["tasks"])

app = celery_app
