from typing import List, Dict, Any, Optional, Generic, TypeVar
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

T = TypeVar('T')

# =============================================================================
# API ENVELOPE
# =============================================================================

class ApiMeta(BaseModel):
    version: int = 1
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    pagination: Optional[Dict[str, Any]] = None

class ApiError(BaseModel):
    code: str
    message: str
    target: Optional[str] = None # Field name or entity ID
    details: Optional[Any] = None

class ApiResponse(BaseModel, Generic[T]):
    data: Optional[T] = None
    meta: ApiMeta = Field(default_factory=ApiMeta)
    errors: Optional[List[ApiError]] = None

# =============================================================================
# SHARED VOCABULARY
# =============================================================================

class CaseStage(str, Enum):
    ASSESSMENT = "Assessment"
    ADJUDICATION = "Adjudication"
    FIRST_APPEAL = "First Appeal"
    TRIBUNAL = "Tribunal"
    HIGH_COURT = "High Court"
    SUPREME_COURT = "Supreme Court"

# Lifecycle order of a matter through the forums
STAGE_ORDER: List[str] = [s.value for s in CaseStage]

class Priority(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

class CaseStatus(str, Enum):
    ACTIVE = "Active"
    PENDING = "Pending"
    CLOSED = "Closed"
    ON_HOLD = "On Hold"

# =============================================================================
# PAGINATION
# =============================================================================


def pagination_meta(total: int, limit: int, offset: int) -> Dict[str, Any]:
    return {
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total,
        }
    }
