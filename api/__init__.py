"""REST API module for the reconciler.

This module provides HTTP endpoints for:
- Publishing jobs onto the event queues
- Queue statistics, pausing and resuming
- Inspecting and requeueing dead letters
- Health checks
"""

from .main import create_app

__all__ = ['create_app']
