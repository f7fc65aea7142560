"""
nova_session.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Request-scoped logging context for the HTTP surface.
"""

# Package marker.
