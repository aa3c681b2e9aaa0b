"""
Control Controllers (API Routes)
================================

FastAPI routes for citizen requests and deadline control.

Controllers are thin - they delegate to application services.
The acting user is supplied by the gateway in X-User-* headers.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from civictrack.config import CONTROL_MANAGER_ROLES, UserRole
from civictrack.control.application import (
    ControlServices,
    RemoveFromControlDTO,
    RequestCreateDTO,
    RequestLifecycleService,
    RequestListQuery,
    RequestListResponse,
    RequestUpdateDTO,
    RequestView,
)
from civictrack.control.domain import Actor
from civictrack.infrastructure.database import get_session
from civictrack.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/requests", tags=["Requests"])


# ========== Example payloads for Swagger ==========

REQUEST_CREATE_EXAMPLE = {
    "citizen_name": "Jane Citizen",
    "contact_email": "jane@example.org",
    "contact_phone": "+1 555 0100",
    "request_type_id": 1,
    "request_topic_id": 3,
    "description": "Street light on Elm St. has been out for a week.",
    "address": "12 Elm St.",
    "priority": "high",
    "executor_user_id": 7,
    "due_date": "2026-10-20T12:00:00Z",
    "attachments": [
        {"original_name": "photo.jpg", "stored_name": "a1b2c3.jpg", "mime_type": "image/jpeg", "size": 48213}
    ]
}


# ========== Dependencies ==========

async def get_control_services(
    request: Request,
    session: AsyncSession = Depends(get_session)
) -> ControlServices:
    """Build the control services around the request-scoped session."""
    return request.app.state.control_factory.build(session)


async def get_lifecycle_service(
    services: ControlServices = Depends(get_control_services)
) -> RequestLifecycleService:
    return services.lifecycle


async def get_actor(
    x_user_id: Optional[int] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None)
) -> Optional[Actor]:
    """Actor from gateway headers; None for anonymous calls."""
    if x_user_id is None:
        return None
    try:
        role = UserRole(x_user_role) if x_user_role else UserRole.CITIZEN
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role: {x_user_role}"
        ) from None
    return Actor(
        user_id=x_user_id,
        email=x_user_email or "",
        name=x_user_name or "",
        role=role,
    )


async def require_actor(actor: Optional[Actor] = Depends(get_actor)) -> Actor:
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    return actor


async def require_control_manager(actor: Actor = Depends(require_actor)) -> Actor:
    if actor.role not in CONTROL_MANAGER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions"
        )
    return actor


# ========== Route Handlers ==========

@router.post(
    "",
    response_model=RequestView,
    status_code=status.HTTP_201_CREATED,
    summary="Register a citizen request",
    description="""
    Register a new citizen request with optional attachment metadata.

    The control status is derived from `due_date`; a request created inside the
    due-soon window (or already overdue) triggers notifications right away.
    """,
    responses={201: {"description": "Request created"}, 400: {"description": "Invalid payload"}},
    openapi_extra={"requestBody": {"content": {"application/json": {"example": REQUEST_CREATE_EXAMPLE}}}}
)
async def create_request(
    payload: RequestCreateDTO,
    service: RequestLifecycleService = Depends(get_lifecycle_service),
    actor: Optional[Actor] = Depends(get_actor)
) -> RequestView:
    return await service.create(payload, actor=actor)


@router.get(
    "",
    response_model=RequestListResponse,
    summary="List requests",
    description="Filtered, sorted and paginated listing. Page size is capped at 100."
)
async def list_requests(
    query: RequestListQuery = Depends(),
    service: RequestLifecycleService = Depends(get_lifecycle_service)
) -> RequestListResponse:
    return await service.list(query)


@router.get(
    "/{request_id}",
    response_model=RequestView,
    summary="Get a request",
    responses={404: {"description": "Request not found"}}
)
async def get_request(
    request_id: int,
    service: RequestLifecycleService = Depends(get_lifecycle_service)
) -> RequestView:
    view = await service.get(request_id)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
    return view


@router.patch(
    "/{request_id}",
    response_model=RequestView,
    summary="Update a request",
    description="Only the fields present in the body are changed.",
    responses={404: {"description": "Request not found"}, 400: {"description": "Invalid change"}}
)
async def update_request(
    request_id: int,
    payload: RequestUpdateDTO,
    service: RequestLifecycleService = Depends(get_lifecycle_service),
    actor: Optional[Actor] = Depends(get_actor)
) -> RequestView:
    view = await service.update(request_id, payload, actor=actor)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Request not found")
    return view


@router.patch(
    "/{request_id}/remove-from-control",
    response_model=RequestView,
    summary="Remove a request from control",
    description="""
    Take a request out of deadline control. Allowed for admins, supervisors
    and operators. Completed, archived and already removed requests are rejected.
    """,
    responses={
        400: {"description": "Request cannot be removed in its current state"},
        403: {"description": "Insufficient permissions"},
        404: {"description": "Request not found"}
    }
)
async def remove_from_control(
    request_id: int,
    payload: Optional[RemoveFromControlDTO] = None,
    service: RequestLifecycleService = Depends(get_lifecycle_service),
    actor: Actor = Depends(require_control_manager)
) -> RequestView:
    note = payload.note if payload else None
    return await service.remove_from_control(request_id, note, actor)
