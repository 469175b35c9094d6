"""
API Dependencies package.

The scheduler service is owned by the application (app.state) and handed to
routes through get_scheduler_service.
"""

from .service import get_scheduler_service

__all__ = ["get_scheduler_service"]
