"""Celery background task processing."""
