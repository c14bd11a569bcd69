"""
Backend package for the homework tracker API.

This package provides a FastAPI application with identity resolution and
database abstractions for storing each user's list of assignments.
"""

