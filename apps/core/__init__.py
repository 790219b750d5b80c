"""
Shared infrastructure: base model, error taxonomy, request context,
unit of work, structured logging and the authorization guard.
"""
