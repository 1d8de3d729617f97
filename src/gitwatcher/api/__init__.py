"""External API clients.

Submodules:
    github -- GitHub REST client (draft pull requests)
"""
