"""Celery worker for receipt recognition"""
