# app/schemas/tickets.py
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.db.models import PriorityEnum as Priority

# addressee / assignee reference: user id, username or display name
UserRef = Union[int, str]


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


class TicketCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    emp_id: str = Field(..., min_length=1, max_length=32)
    username: str = Field(..., min_length=1, max_length=64)
    full_name: str = Field(..., min_length=1, max_length=255)
    department: str = Field(..., min_length=1, max_length=128)
    reporting_to: Union[UserRef, List[UserRef]]
    issue_text: str = Field(..., min_length=1)
    remarks: Optional[str] = None
    ip_address: Optional[str] = Field(default=None, max_length=64)

    @field_validator("emp_id", mode="before")
    @classmethod
    def _emp_id_as_str(cls, v):
        return str(v) if isinstance(v, int) else v

    @field_validator("remarks", "ip_address", mode="before")
    @classmethod
    def _optional_blank(cls, v):
        return _blank_to_none(v)

    def addressee_refs(self) -> list[UserRef]:
        """Distinct, non-blank addressees in submission order."""
        refs = self.reporting_to if isinstance(self.reporting_to, list) else [self.reporting_to]
        out: list[UserRef] = []
        for r in refs:
            if isinstance(r, str):
                r = r.strip()
                if not r:
                    continue
            if r not in out:
                out.append(r)
        return out


class TicketAssign(BaseModel):
    assigned_to: Optional[UserRef] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Optional[Priority] = None
    remarks: Optional[str] = None

    @field_validator("assigned_to", "start_date", "end_date", "remarks", mode="before")
    @classmethod
    def _optional_blank(cls, v):
        return _blank_to_none(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority_any_case(cls, v):
        v = _blank_to_none(v)
        if isinstance(v, str):
            return v.strip().capitalize()
        return v


class TicketReject(BaseModel):
    message: Optional[str] = None


class TechnicianReject(BaseModel):
    reason: Optional[str] = None


class TicketStatusUpdate(BaseModel):
    # validated against the allow-list by the workflow, not by pydantic
    status: Optional[str] = None
    fixed_note: Optional[str] = None


class TicketOut(BaseModel):
    id: int
    emp_id: str
    username: str
    full_name: str
    department: str
    system_ip: Optional[str] = None
    issue_text: str
    remarks: Optional[str] = None

    reporting_to: Optional[str] = None
    reporting_to_id: int
    assigned_to: Optional[str] = None
    assigned_to_id: Optional[int] = None

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    priority: Optional[str] = None
    status: str
    admin_remarks: Optional[str] = None
    fixed_note: Optional[str] = None
    reject_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TicketCreated(BaseModel):
    ok: bool = True
    message: str
    ids: list[int]
