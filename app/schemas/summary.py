from pydantic import BaseModel, Field
from typing import Optional


# ---- Requests ----
class SummarizeRequest(BaseModel):
    transcript: str
    instruction: Optional[str] = None


# ---- Responses ----
class SummarizeResponse(BaseModel):
    summary: str
    cached: bool = False
    remaining_requests: int = Field(..., alias="remainingRequests")

    class Config:
        populate_by_name = True
