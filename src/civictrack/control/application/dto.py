"""
Control Application DTOs
========================

Data Transfer Objects for the request control API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from civictrack.config import settings
from civictrack.control.domain import Attachment, CitizenRequest


# ========== Type Aliases for Literals ==========
PriorityStr = Literal["low", "medium", "high", "urgent"]
ControlStatusStr = Literal["no", "normal", "approaching", "overdue"]
SortFieldStr = Literal[
    "created_at", "due_date", "priority", "status", "control_status", "citizen_name"
]
SortOrderStr = Literal["asc", "desc"]

# Unparsable strings are kept as-is and rejected by the service with a 400
DueDateField = Optional[Union[datetime, str]]


# ========== Request DTOs ==========

class AttachmentDTO(BaseModel):
    """Metadata of an uploaded file."""
    original_name: str = Field(..., min_length=1, max_length=255)
    stored_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(default="application/octet-stream", max_length=127)
    size: int = Field(default=0, ge=0)

    def to_domain(self) -> Attachment:
        return Attachment(
            original_name=self.original_name,
            stored_name=self.stored_name,
            mime_type=self.mime_type,
            size=self.size,
        )


class RequestCreateDTO(BaseModel):
    """DTO for registering a citizen request."""
    citizen_name: str = Field(..., min_length=1, max_length=255, description="Citizen full name")
    contact_phone: Optional[str] = Field(None, max_length=50)
    contact_email: Optional[str] = Field(None, max_length=255)
    contact_channel: Optional[str] = Field(None, max_length=50)
    request_type_id: Optional[int] = None
    request_topic_id: Optional[int] = None
    social_group_id: Optional[int] = None
    intake_form_id: Optional[int] = None
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    territory: Optional[str] = Field(None, max_length=255)
    status: str = Field(default="new", description="Initial workflow status")
    priority: PriorityStr = Field(default="medium")
    executor: Optional[str] = Field(None, max_length=255, description="Executor display name")
    executor_user_id: Optional[int] = None
    due_date: DueDateField = Field(None, description="Deadline (ISO 8601)")
    attachments: List[AttachmentDTO] = Field(default_factory=list)


class RequestUpdateDTO(BaseModel):
    """
    DTO for patching a request.

    Only fields present in the payload are applied (``model_fields_set``);
    an explicit null clears a nullable field.
    """
    citizen_name: Optional[str] = Field(None, min_length=1, max_length=255)
    contact_phone: Optional[str] = Field(None, max_length=50)
    contact_email: Optional[str] = Field(None, max_length=255)
    contact_channel: Optional[str] = Field(None, max_length=50)
    request_type_id: Optional[int] = None
    request_topic_id: Optional[int] = None
    social_group_id: Optional[int] = None
    intake_form_id: Optional[int] = None
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    territory: Optional[str] = Field(None, max_length=255)
    status: Optional[str] = None
    priority: Optional[PriorityStr] = None
    executor: Optional[str] = Field(None, max_length=255)
    executor_user_id: Optional[int] = None
    due_date: DueDateField = None
    attachments: List[AttachmentDTO] = Field(default_factory=list)

    def changes(self) -> Dict[str, Any]:
        """Field changes actually sent by the client, attachments excluded."""
        return self.model_dump(exclude_unset=True, exclude={"attachments"})


class RemoveFromControlDTO(BaseModel):
    """Optional free-text note attached to a removal."""
    note: Optional[str] = Field(None, max_length=settings.max_note_length)


class RequestListQuery(BaseModel):
    """Query parameters for the request listing."""
    citizen_name: Optional[str] = None
    request_type_id: Optional[int] = None
    request_topic_id: Optional[int] = None
    social_group_id: Optional[int] = None
    intake_form_id: Optional[int] = None
    status: Optional[str] = None
    priority: Optional[PriorityStr] = None
    control_status: Optional[ControlStatusStr] = None
    executor_user_id: Optional[int] = None
    address: Optional[str] = None
    territory: Optional[str] = None
    due_from: Optional[datetime] = None
    due_to: Optional[datetime] = None
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    sort_by: SortFieldStr = "created_at"
    sort_order: SortOrderStr = "desc"


# ========== Response DTOs ==========

class AttachmentView(BaseModel):
    """Response model for attachment metadata."""
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    original_name: str
    stored_name: str
    mime_type: str
    size: int
    created_at: Optional[datetime] = None


class RequestView(BaseModel):
    """Response model for a single request."""
    id: int
    citizen_name: str
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    contact_channel: Optional[str] = None
    request_type_id: Optional[int] = None
    request_topic_id: Optional[int] = None
    social_group_id: Optional[int] = None
    intake_form_id: Optional[int] = None
    description: Optional[str] = None
    address: Optional[str] = None
    territory: Optional[str] = None
    status: str
    priority: str
    executor: Optional[str] = None
    executor_user_id: Optional[int] = None
    due_date: Optional[datetime] = None
    control_status: ControlStatusStr
    is_removed_from_control: bool = False
    removed_from_control_at: Optional[datetime] = None
    removed_from_control_by: Optional[str] = None
    removed_from_control_by_user_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    attachments: List[AttachmentView] = Field(default_factory=list)

    @classmethod
    def from_entity(cls, request: CitizenRequest) -> "RequestView":
        return cls(
            id=request.id,
            citizen_name=request.citizen_name,
            contact_phone=request.contact_phone,
            contact_email=request.contact_email,
            contact_channel=request.contact_channel,
            request_type_id=request.request_type_id,
            request_topic_id=request.request_topic_id,
            social_group_id=request.social_group_id,
            intake_form_id=request.intake_form_id,
            description=request.description,
            address=request.address,
            territory=request.territory,
            status=getattr(request.status, "value", request.status),
            priority=getattr(request.priority, "value", request.priority),
            executor=request.executor,
            executor_user_id=request.executor_user_id,
            due_date=request.due_date,
            control_status=getattr(request.control_status, "value", request.control_status),
            is_removed_from_control=request.removed_from_control_at is not None,
            removed_from_control_at=request.removed_from_control_at,
            removed_from_control_by=request.removed_from_control_by,
            removed_from_control_by_user_id=request.removed_from_control_by_user_id,
            created_at=request.created_at,
            updated_at=request.updated_at,
            attachments=[AttachmentView.model_validate(a) for a in request.attachments],
        )


class PageMeta(BaseModel):
    """Pagination metadata."""
    total: int
    page: int
    limit: int
    pages: int


class RequestListResponse(BaseModel):
    """Response model for the request listing."""
    data: List[RequestView]
    meta: PageMeta


class HealthResponse(BaseModel):
    """Response model for the health endpoint."""
    status: str
    version: str
    environment: str
    scheduler_running: bool = False
