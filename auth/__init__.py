"""auth/ -- Email-challenge authentication and bearer credentials for Airlock.

Layer rule: auth/ imports from core/, directory/, and mail/ plus third-party
libraries. It does NOT import from api/, web/, or storage/.
api/ and web/ import from auth/, not the other way around.
"""
