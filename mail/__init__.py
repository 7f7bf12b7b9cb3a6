"""
mail/ -- Outbound email for the sign-in loop.

Layer rule: may import from core/. No imports from api/, web/, auth/, or
directory/.
"""
