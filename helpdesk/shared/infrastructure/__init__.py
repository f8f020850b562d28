"""
Infrastructure Layer
=====================

Low-level technical concerns shared by every module:
- Logging setup
- Metrics export
- External call timeouts
"""
