"""
nova_session.session

Session core: warm cache, debouncer, profile loader and the session store.
"""

# Package marker.
