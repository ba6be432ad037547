"""Employees module — Employee model, code allocation, resolution and lifecycle."""

from backoffice.employees.models import Employee

__all__ = ["Employee"]
