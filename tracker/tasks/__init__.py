"""Celery tasks package"""
