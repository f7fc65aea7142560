"""
nova_session.db

Local persistence package (warm session cache).

Responsibilities:
- SQLAlchemy base/models and async session helpers.
- Repository for the cached session record.
"""

# Package marker.
