"""
nova_session.backend

Client boundary to the hosted backend.

Responsibilities:
- Collaborator interfaces (identity provider, profile data store).
- httpx adapters implementing them, with structural error classification.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The session core depends on `backend.ports` only; adapters are wired in `wiring`.
