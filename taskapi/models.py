"""
Pydantic models for API requests and responses.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_core import PydanticCustomError

from .address import is_evm_address, is_tx_hash
from .registry import INVALID_ADDRESS, INVALID_TIMESTAMP, INVALID_TX_HASH, CompletionRecord


# ============================================================================
# Complete Task
# ============================================================================

class CompleteTaskRequest(BaseModel):
    """Request to register a task completion."""

    user_address: str = Field(..., alias="userAddress", description="User EVM address (0x + 40 hex)")
    timestamp: int = Field(..., description="Completion time, seconds since epoch")
    tx: Optional[str] = Field(None, description="Transaction hash (0x + 64 hex)")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "examples": [
                {
                    "userAddress": "0x742d35Cc6535C9c80B5D7a8f1C8cd55c26A0f123",
                    "timestamp": 1715418615,
                    "tx": "0x6539cac36a07f9c3d58ca0a4884c09ad05707f9d247fed3fb6853d1a86466f15",
                }
            ]
        },
    }

    @field_validator("user_address", mode="before")
    @classmethod
    def check_address(cls, value: Any) -> str:
        if not is_evm_address(value):
            raise PydanticCustomError("invalid_address", INVALID_ADDRESS)
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def check_timestamp(cls, value: Any) -> int:
        # Accept numeric strings, reject bools and floats
        if isinstance(value, str) and value.isascii() and value.isdigit():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise PydanticCustomError("invalid_timestamp", INVALID_TIMESTAMP)
        return value

    @field_validator("tx", mode="before")
    @classmethod
    def check_tx(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not is_tx_hash(value):
            raise PydanticCustomError("invalid_tx_hash", INVALID_TX_HASH)
        return value


# Messages for required fields that are absent from the body
MISSING_FIELD_MESSAGES = {
    "userAddress": INVALID_ADDRESS,
    "timestamp": INVALID_TIMESTAMP,
}


class TaskData(BaseModel):
    """Completion data for an address."""

    timestamp: int = Field(0, description="Completion timestamp (0 if not completed)")
    tx: str = Field("", description="Transaction hash (empty if none)")


class TaskResponse(BaseModel):
    """Response shared by the task endpoints."""

    status: int = Field(..., description="1 if the address completed the task, else 0")
    data: TaskData = Field(default_factory=TaskData)
    error: Optional[str] = Field(None, description="Error message if failed")

    @classmethod
    def complete(cls, record: CompletionRecord) -> "TaskResponse":
        return cls(status=1, data=TaskData(timestamp=record.timestamp, tx=record.tx_hash or ""))

    @classmethod
    def incomplete(cls) -> "TaskResponse":
        return cls(status=0)

    @classmethod
    def failure(cls, message: str) -> "TaskResponse":
        return cls(status=0, error=message)


class ErrorResponse(BaseModel):
    """Error body for routing and rate limit failures."""

    status: int = 0
    error: str


# ============================================================================
# Health / Stats
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    timestamp: int = Field(..., description="Server time, seconds since epoch")
    completions: int = Field(..., description="Number of completed addresses")
    transactions: int = Field(..., description="Number of consumed transaction hashes")


class StatsResponse(BaseModel):
    """Registry counters."""

    total_completions: int = Field(..., serialization_alias="totalCompletions")
    total_transactions: int = Field(..., serialization_alias="totalTransactions")
    timestamp: int = Field(..., description="Server time, seconds since epoch")


class ServiceInfoResponse(BaseModel):
    """Root endpoint description of the service."""

    message: str
    version: str
    endpoints: dict[str, str]
    rate_limit: str
    timestamp: int
