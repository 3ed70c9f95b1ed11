"""
OEE Monitor - Task Modules

This package contains all Celery task definitions for background processing.
"""

from oee_monitor.celery import celery_app

__all__ = ["celery_app"]
