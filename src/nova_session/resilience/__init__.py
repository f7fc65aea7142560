"""
nova_session.resilience

Failure-handling primitives for calls to the hosted backend.

Responsibilities:
- Circuit breaker (fail fast while the profile service is degraded).
- Retry with bounded exponential backoff for transport failures.
"""

# Package marker.
