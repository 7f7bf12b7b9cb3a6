"""directory/ -- User directory: users and their per-service grants.

Layer rule: directory/ imports only core/ plus third-party libraries.
It does NOT import from api/, web/, auth/, or mail/.
"""
