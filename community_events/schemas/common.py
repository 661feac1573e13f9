"""
Common schemas for API responses and error handling.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")
    retry_after: Optional[int] = Field(None, description="Seconds to wait before retrying")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: Optional[str] = None
    timestamp: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "examples": [
            {
                "error": {
                    "code": "EVENT_AT_CAPACITY",
                    "message": "event at capacity",
                    "details": {
                        "event_id": "123e4567-e89b-12d3-a456-426614174000",
                        "capacity": 50
                    },
                    "suggestions": ["Check similar events"]
                }
            },
            {
                "error": {
                    "code": "CONCURRENCY_CONFLICT",
                    "message": "registration timed out",
                    "retry_after": 1
                }
            }
        ]
    })


class MessageResponse(BaseModel):
    """Schema for simple success responses."""

    message: str = Field(..., description="Success message")
