"""HTTP surface for the CRM credential service."""

from .main import create_app

__all__ = ["create_app"]
