from pydantic import BaseModel, Field


class BulkFailure(BaseModel):
    id: str
    error: str
    detail: str = ""


class BulkResult(BaseModel):
    """Per-item outcome of a bulk operation. Partial success is expected."""
    succeeded: list[str] = Field(default_factory=list)
    failed: list[BulkFailure] = Field(default_factory=list)
