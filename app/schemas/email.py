from pydantic import BaseModel, Field
from typing import List, Optional


# ---- Requests ----
class SendEmailRequest(BaseModel):
    recipients: List[str]
    summary: str
    instruction: Optional[str] = None
    timestamp: Optional[str] = None


# ---- Responses ----
class FailedRecipient(BaseModel):
    email: str
    error: Optional[str] = None


class SendEmailResponse(BaseModel):
    message: str
    successful: List[str]
    failed: List[FailedRecipient]
    rejected: List[str] = []
    remaining_requests: int = Field(..., alias="remainingRequests")

    class Config:
        populate_by_name = True


class SampleEmailResponse(BaseModel):
    message: str
    recipient: str
