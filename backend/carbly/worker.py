# backend/carbly/worker.py

"""
Celery worker entry point: ``celery -A carbly.worker worker -B``.
Importing the tasks module registers the @celery_app.task decorators.
"""

from carbly.core.celery_app import celery_app
from carbly.core.logging_config import configure_logging

import carbly.background.tasks

configure_logging()
