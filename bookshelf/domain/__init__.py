"""
Domain layer - Core business logic and models.

This module contains the core domain models, collaborator interfaces and
error taxonomy, isolated from external concerns like Redis and Flask.
"""
