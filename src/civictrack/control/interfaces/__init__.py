"""
Control Interfaces Layer
========================

HTTP controllers for request control.
"""

from civictrack.control.interfaces.controllers import router

__all__ = ["router"]
