"""
Helpdesk AI Pipeline
====================

Multi-tenant support desk back end: moderation, chunking, embeddings,
routing and resolution of support tickets against an organization-scoped
knowledge base.
"""

__version__ = "1.0.0"
