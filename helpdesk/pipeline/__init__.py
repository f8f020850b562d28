"""
Pipeline Module
===============

Bounded context for AI ticket processing.

Responsibilities:
- Moderate, chunk, embed and route new tickets
- Answer customer messages grounded in the knowledge base
- Fold resolution knowledge back into the knowledge base
- Score resolutions and raise notifications
"""

__version__ = "1.0.0"
