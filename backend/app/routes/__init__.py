"""
HTTP routes.

All application endpoints are versioned under v1/.
"""
