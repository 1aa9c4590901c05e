"""
Query Server Package.

FastAPI application over the warehouse and the fund-flow tracer.
"""

from api.server import create_app


__all__ = ["create_app"]
