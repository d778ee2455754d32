"""HTTP gateway for the mood chat engine."""

from .app import create_app

__all__ = ['create_app']
