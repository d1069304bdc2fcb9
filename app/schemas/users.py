# app/schemas/users.py
from __future__ import annotations
from pydantic import BaseModel, ConfigDict


class EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    emp_id: str | None = None
    username: str
    display_name: str
    department: str | None = None
    email: str | None = None
    role: str


class StaffOut(BaseModel):
    """Admin / technician entry for pickers on the dashboards."""
    model_config = ConfigDict(from_attributes=True)
    id: int
    username: str
    display_name: str
    email: str | None = None
