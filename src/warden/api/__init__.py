"""
REST API for the panel.
"""

from .app import create_app

__all__ = ["create_app"]
