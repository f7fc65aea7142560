"""
nova_session.api.routers

Routers for health checks and the session API.
"""
