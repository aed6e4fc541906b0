from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from ..core.constants import Severity, SuggestedAction


class ViolationCreate(BaseModel):
    violation_type: str
    severity: str = "medium"
    evidence: Optional[Dict[str, Any]] = None


class WarningCreate(BaseModel):
    message: str
    severity: str = "medium"


class EscalationResult(BaseModel):
    success: Literal[True] = True
    violation_id: int
    warning_count: int
    is_flagged: bool
    suggested_action: SuggestedAction


class ViolationRead(BaseModel):
    id: int
    attempt_id: int
    violation_type: str
    severity: Severity
    evidence: Optional[Dict[str, Any]] = None
    detected_at: datetime

    class Config:
        from_attributes = True


class ViolationList(BaseModel):
    success: Literal[True] = True
    attempt_id: int
    violations: List[ViolationRead]


class ViolationStatistics(BaseModel):
    success: Literal[True] = True
    attempt_id: int
    total_violations: int
    warning_count: int
    is_flagged: bool
    by_type: Dict[str, int]
    by_severity: Dict[str, int]
    timeline: List[Dict[str, Any]]


class WarningRead(BaseModel):
    warning_id: int
    message: Optional[str] = None
    severity: Severity
    sent_at: datetime
    issued_by: Optional[str] = None
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None


class WarningHistory(BaseModel):
    success: Literal[True] = True
    attempt_id: int
    warnings: List[WarningRead]


class WarningAcknowledged(BaseModel):
    success: Literal[True] = True
    warning_id: int
    acknowledged_at: datetime
