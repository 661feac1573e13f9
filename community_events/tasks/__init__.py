"""
Background tasks for the Community Events API.
"""

from .celery_app import celery_app

__all__ = ["celery_app"]
