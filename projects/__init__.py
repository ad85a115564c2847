"""projects/ -- User-owned project resource.

Layer rule: projects/ imports only core/ and third-party libraries.
"""
