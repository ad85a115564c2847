"""auth/ -- Accounts, passwords, and access/refresh token lifecycle.

Layer rule: auth/ imports core/, billing/ (to create the FREE subscription
at registration) and third-party libraries. It does NOT import from api/ or
projects/. api/ imports from auth/, not the other way around.
"""
