"""
Infrastructure Layer
=====================

Adapters for the database, LLM providers and the knowledge-base vector
store.
"""
