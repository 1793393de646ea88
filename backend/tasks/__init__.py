# backend/tasks/__init__.py
"""
Campaign pipeline services and Celery task registration.

Celery discovers `tasks.receipt_tasks` through `celery_app.include`; the
service modules here are imported directly by the routes.
"""
