"""
Shared Kernel Module
====================

Shared infrastructure used by every bounded context (currently request
control only): structured logging and HTTP middleware.

DO NOT add request-control business logic to the shared kernel.
"""

__version__ = "1.0.0"
