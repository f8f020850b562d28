"""
Pipeline Interfaces Layer
=========================

Interface adapters (controllers) for the ticket AI pipeline.

Contains:
- Controllers: FastAPI route handlers
"""

from helpdesk.pipeline.interfaces.controllers import router as pipeline_router

__all__ = ["pipeline_router"]
