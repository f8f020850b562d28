"""
Shared Kernel Module
====================

Shared infrastructure used across the application: structured logging,
metrics export, timeouts and HTTP middleware.

DO NOT add pipeline business logic to the shared kernel.
"""
