"""
RARS Backend Application Package

This package contains the FastAPI backend for the Research Approval &
Repository System, including:

- main.py: FastAPI application, middleware and router wiring
- lifecycle.py: application status transition table
- permissions.py: role/permission resolver
- services/: lifecycle operations (documents, reviews, decisions, extensions)
"""

__version__ = "1.0.0"
