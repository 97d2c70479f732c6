"""FastAPI server adapter for galaxy-workflow.

Design intent:
- Keep business logic in `galaxy_workflow.session` and `galaxy_workflow.ledger`
- Keep server-specific concerns (routing, CORS, credentials, status codes) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from galaxy_workflow.server.app import create_app
