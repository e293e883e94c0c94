"""auth/ -- Credential and session authentication package for Bennu.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Settings arrive as plain arguments
(see build_auth_service). api/ imports from auth/, not the other way around.
"""
