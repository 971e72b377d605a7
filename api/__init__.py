"""
API Module for the Luvia product assistant.

FastAPI application with routes for:
- Chat interactions
- Operator conversation reset
- Human handoff (escalation) management

Import the application from ``api.main``.
"""
