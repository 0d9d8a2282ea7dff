"""Middleware package for the snapshot engine API"""
from snapshot_engine.middleware.logging_middleware import RequestLoggingMiddleware

__all__ = ['RequestLoggingMiddleware']
