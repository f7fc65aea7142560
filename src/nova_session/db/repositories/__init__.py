"""
nova_session.db.repositories

Repositories over the local cache tables.
"""
