"""
Portfolio Contact API workers package
Celery tasks for work that must not block the contact request
"""

from .celery_app import celery_app

__all__ = ['celery_app']
