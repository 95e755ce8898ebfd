"""
Work order DTOs. Attachments are an explicit tagged list validated here, at the
ingestion boundary, instead of passing opaque JSON through.
"""
import base64
import binascii
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, HttpUrl, field_validator, model_validator

from orderdesk.core.config import settings


class FileAttachment(BaseModel):
    """Inline file: path plus base64-encoded content."""
    kind: Literal["file"] = "file"
    path: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., description="Base64-encoded bytes")

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        try:
            raw = base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("content must be valid base64") from e
        if len(raw) > settings.max_image_size_mb * 1024 * 1024:
            raise ValueError(f"file exceeds {settings.max_image_size_mb}MB")
        return v


class UrlAttachment(BaseModel):
    """Reference to an already uploaded file."""
    kind: Literal["url"] = "url"
    url: HttpUrl


Attachment = Annotated[Union[FileAttachment, UrlAttachment], Field(discriminator="kind")]


class OrderAttributes(BaseModel):
    prompt: str = Field(..., min_length=1)
    work_type: Literal["html", "react"] = "html"
    ai_tier: Literal["junior", "senior"] = "senior"
    language: str = Field(default="uk", min_length=2, max_length=32)  # "en" or bilingual "en+uk"
    geo: str | None = None
    note: str | None = None
    vip_prompt: str | None = None
    attachments: list[Attachment] = Field(default_factory=list)

    @field_validator("prompt")
    @classmethod
    def strip_prompt(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("prompt must not be blank")
        return v

    @model_validator(mode="after")
    def check_attachments(self) -> "OrderAttributes":
        if len(self.attachments) > settings.max_order_images:
            raise ValueError(f"at most {settings.max_order_images} attachments allowed")
        return self


class SubmitWorkOrderRequest(BaseModel):
    team_id: str
    items: list[str] = Field(..., min_length=1, description="Site names; one order per item")
    attributes: OrderAttributes


class SubmitWorkOrderResponse(BaseModel):
    order_ids: list[str]
    unit_price: Decimal
    total_price: Decimal


class CompleteWorkOrderRequest(BaseModel):
    artifact_ref: str = Field(..., min_length=1)
    final_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    note: str | None = None


class CancelWorkOrderRequest(BaseModel):
    reason: str | None = None


class BulkTransitionRequest(BaseModel):
    order_ids: list[str] = Field(..., min_length=1)
    op: Literal["claim", "complete", "cancel"]
    reason: str | None = None
    # complete only: order_id -> artifact_ref
    artifact_refs: dict[str, str] = Field(default_factory=dict)


class WorkOrderOut(BaseModel):
    id: str
    team_id: str
    requester_id: str
    assignee_id: str | None
    status: str
    price: Decimal
    final_price: Decimal | None
    site_name: str
    prompt: str
    language: str
    work_type: str
    ai_tier: str
    geo: str | None
    note: str | None
    admin_note: str | None
    artifact_ref: str | None
    cancel_reason: str | None
    created_at: datetime
    claimed_at: datetime | None
    completed_at: datetime | None

    model_config = {"from_attributes": True}
