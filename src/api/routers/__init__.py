"""
API Routers package.
"""

from . import jobs, scheduler, templates

__all__ = ["jobs", "scheduler", "templates"]
