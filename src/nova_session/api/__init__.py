"""
nova_session.api

HTTP surface of the session core.

Responsibilities:
- FastAPI app factory, dependencies and routers.
"""

# Package marker.
