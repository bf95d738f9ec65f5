"""
Pydantic schemas for request/response validation
"""
from pydantic import BaseModel
from typing import Optional, List, Dict, Any
from datetime import datetime

# ===== Common Schemas =====

class HealthResponse(BaseModel):
    status: str

class VersionResponse(BaseModel):
    version: str

# ===== Job Schemas =====

class AnalyzeBatchResponse(BaseModel):
    ok: bool = True
    result: str
    claimed: List[int] = []
    done: List[int] = []
    errors: List[int] = []
    skipped: List[int] = []
    reclaimed: List[int] = []

# ===== Admin Schemas =====

class RetryRequest(BaseModel):
    image_id: Optional[int] = None

class RetryResponse(BaseModel):
    ok: bool = True
    queued: bool = True
    job_id: int

class AdminEchoResponse(BaseModel):
    ok: bool = True
    user_id: str

class AnalysisMeal(BaseModel):
    meal_slot: Optional[str] = None
    taken_at: Optional[datetime] = None

class AnalysisImage(BaseModel):
    storage_path: Optional[str] = None

class AnalysisListRow(BaseModel):
    image_id: int
    meal_id: Optional[int] = None
    status: str
    ran_at: Optional[datetime] = None
    error: Optional[str] = None
    raw_response: Dict[str, Any] = {}
    meal: AnalysisMeal
    img: AnalysisImage

class AnalysisListResponse(BaseModel):
    ok: bool = True
    rows: List[AnalysisListRow]

class SummaryCounts(BaseModel):
    done: int
    error: int
    queued: int

class SummaryResponse(BaseModel):
    ok: bool = True
    since: datetime
    counts: SummaryCounts

class StatsRange(BaseModel):
    startIso: str
    endIso: str
    startDate: str
    endDate: str
    timezone: str

class StatusTotal(BaseModel):
    status: str
    count: int

class JobRow(BaseModel):
    id: int
    status: str
    created_at: Optional[datetime] = None
    run_at: Optional[datetime] = None
    payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

class StatsResponse(BaseModel):
    ok: bool = True
    range: StatsRange
    totals: List[StatusTotal]
    errors: List[JobRow]
    queued: List[JobRow]
