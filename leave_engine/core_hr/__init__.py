"""Core HR module — the employee directory the leave engine reads from."""

from leave_engine.core_hr.models import Employee, RoleAssignment
from leave_engine.core_hr.service import DirectoryService

__all__ = ["Employee", "RoleAssignment", "DirectoryService"]
