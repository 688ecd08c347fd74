"""
Session context for AI Memory MCP
Copyright 2025 Jurden Bruce
"""

import logging
from typing import Optional

from .errors import ValidationError
from .models import DEFAULT_PROJECT, SessionContext

logger = logging.getLogger("ai-memory.session")


class SessionManager:
    """Per-owner current project pointer.

    Unset -> P1 -> P2 -> ... ; every switch overwrites the previous one.
    """

    def __init__(self, sqlite_store, project_from_session: bool = False):
        self.sqlite_store = sqlite_store
        # When False, memories created without a project go to "default"
        self.project_from_session = project_from_session

    def switch_project(self, owner: str, project: str) -> SessionContext:
        if not isinstance(project, str) or not project.strip():
            raise ValidationError("Project name must not be empty")
        session = self.sqlite_store.upsert_session(owner, project.strip())
        logger.info(f"Owner {owner} switched to project {session.current_project}")
        return session

    def current(self, owner: str) -> SessionContext:
        return self.sqlite_store.get_session(owner)

    def resolve_project(self, owner: str, project: Optional[str]) -> str:
        """Project for a new memory when the caller may have omitted it"""
        if project:
            return project
        if self.project_from_session:
            return self.current(owner).current_project
        return DEFAULT_PROJECT
