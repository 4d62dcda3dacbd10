"""
API Layer

Default ASGI application served when APP is not set.
"""

from api.main import create_app

__all__ = ["create_app"]
