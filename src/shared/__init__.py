"""
Shared Kernel Module
====================

Generic infrastructure used by every bounded context: structured logging,
metrics export and HTTP middleware.

No grouping business logic belongs here.
"""

__version__ = "1.0.0"
