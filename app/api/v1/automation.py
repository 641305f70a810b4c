"""Automation router for automation management and mutation intake."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.core.automation.dispatcher import MutationDispatcher
from app.core.automation.service import AutomationService
from app.core.db.deps import get_db
from app.core.exceptions import raise_not_found
from app.core.pubsub import EventPublisher, get_event_publisher
from app.core.pubsub.models import RecordMutationEvent
from app.schemas.automation import (
    AutomationCreate,
    AutomationExecutionResponse,
    AutomationResponse,
    AutomationUpdate,
    ChainReport,
    SyncLinkResponse,
)
from app.schemas.common import StandardListResponse, StandardResponse, build_pagination

router = APIRouter()


def get_automation_service(db: Annotated[Session, Depends(get_db)]) -> AutomationService:
    """Dependency to get AutomationService."""
    return AutomationService(db)


def get_mutation_dispatcher(request: Request) -> MutationDispatcher:
    """Dependency to get the application's MutationDispatcher."""
    return request.app.state.dispatcher


@router.post(
    "",
    response_model=StandardResponse[AutomationResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create automation",
    description="Create an automation on a source table. The definition is checked "
    "against the tables and fields it references.",
)
async def create_automation(
    automation_data: AutomationCreate,
    service: Annotated[AutomationService, Depends(get_automation_service)],
) -> StandardResponse[AutomationResponse]:
    """Create a new automation."""
    automation = await service.create_automation(
        name=automation_data.name,
        description=automation_data.description,
        table_id=automation_data.table_id,
        trigger=automation_data.trigger.model_dump(mode="json"),
        action=automation_data.action.model_dump(mode="json"),
        enabled=automation_data.enabled,
    )
    return StandardResponse(
        data=AutomationResponse.model_validate(automation),
        message="Automation created successfully",
    )


@router.get(
    "",
    response_model=StandardListResponse[AutomationResponse],
    status_code=status.HTTP_200_OK,
    summary="List automations",
    description="List automations in evaluation (creation) order.",
)
async def list_automations(
    service: Annotated[AutomationService, Depends(get_automation_service)],
    table_id: str | None = Query(default=None, description="Only automations of this table"),
    enabled_only: bool = Query(default=False, description="Only return enabled automations"),
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Page size"),
) -> StandardListResponse[AutomationResponse]:
    """List automations."""
    skip = (page - 1) * page_size
    automations = service.get_all_automations(
        table_id=table_id, enabled_only=enabled_only, skip=skip, limit=page_size
    )
    total = service.count_automations(table_id=table_id, enabled_only=enabled_only)

    return StandardListResponse(
        data=[AutomationResponse.model_validate(a) for a in automations],
        meta=build_pagination(total, page, page_size),
        message="Automations retrieved successfully",
    )


@router.post(
    "/mutations",
    response_model=StandardResponse[ChainReport],
    status_code=status.HTTP_200_OK,
    summary="Process record mutation",
    description="Run the automation chain caused by a record mutation and return "
    "every step taken. The mutation waits behind earlier mutations of its table, "
    "including those read from the records stream.",
)
async def process_mutation(
    event: RecordMutationEvent,
    dispatcher: Annotated[MutationDispatcher, Depends(get_mutation_dispatcher)],
) -> StandardResponse[ChainReport]:
    """Process a mutation through the per-table queue and wait for its chain."""
    report = await dispatcher.dispatch(event)
    return StandardResponse(data=report, message="Mutation processed successfully")


@router.post(
    "/mutations/publish",
    response_model=StandardResponse[dict[str, Any]],
    status_code=status.HTTP_202_ACCEPTED,
    summary="Publish record mutation",
    description="Append a record mutation to the records stream for asynchronous processing.",
)
async def publish_mutation(
    event: RecordMutationEvent,
    publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
) -> StandardResponse[dict[str, Any]]:
    """Queue a mutation on the records stream."""
    message_id = await publisher.publish(event)
    return StandardResponse(
        data={"event_id": str(event.event_id), "message_id": message_id},
        message="Mutation queued",
    )


@router.get(
    "/{automation_id}",
    response_model=StandardResponse[AutomationResponse],
    status_code=status.HTTP_200_OK,
    summary="Get automation",
)
async def get_automation(
    automation_id: UUID,
    service: Annotated[AutomationService, Depends(get_automation_service)],
) -> StandardResponse[AutomationResponse]:
    """Get a specific automation."""
    automation = service.get_automation(automation_id)
    if not automation:
        raise_not_found("Automation", str(automation_id))

    return StandardResponse(
        data=AutomationResponse.model_validate(automation),
        message="Automation retrieved successfully",
    )


@router.put(
    "/{automation_id}",
    response_model=StandardResponse[AutomationResponse],
    status_code=status.HTTP_200_OK,
    summary="Update automation",
    description="Update an automation. Its source table cannot change.",
)
async def update_automation(
    automation_id: UUID,
    automation_data: AutomationUpdate,
    service: Annotated[AutomationService, Depends(get_automation_service)],
) -> StandardResponse[AutomationResponse]:
    """Update an automation."""
    automation = await service.update_automation(
        automation_id=automation_id,
        name=automation_data.name,
        description=automation_data.description,
        trigger=(
            automation_data.trigger.model_dump(mode="json") if automation_data.trigger else None
        ),
        action=(
            automation_data.action.model_dump(mode="json") if automation_data.action else None
        ),
        enabled=automation_data.enabled,
    )
    if not automation:
        raise_not_found("Automation", str(automation_id))

    return StandardResponse(
        data=AutomationResponse.model_validate(automation),
        message="Automation updated successfully",
    )


@router.delete(
    "/{automation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete automation",
    description="Delete an automation. Sync links it created are kept.",
)
async def delete_automation(
    automation_id: UUID,
    service: Annotated[AutomationService, Depends(get_automation_service)],
) -> None:
    """Delete an automation."""
    if not service.delete_automation(automation_id):
        raise_not_found("Automation", str(automation_id))


@router.post(
    "/{automation_id}/toggle",
    response_model=StandardResponse[AutomationResponse],
    status_code=status.HTTP_200_OK,
    summary="Enable or disable automation",
)
async def toggle_automation(
    automation_id: UUID,
    service: Annotated[AutomationService, Depends(get_automation_service)],
) -> StandardResponse[AutomationResponse]:
    """Flip the enabled flag of an automation."""
    automation = service.toggle_automation(automation_id)
    if not automation:
        raise_not_found("Automation", str(automation_id))

    state = "enabled" if automation.enabled else "disabled"
    return StandardResponse(
        data=AutomationResponse.model_validate(automation),
        message=f"Automation {state}",
    )


@router.get(
    "/{automation_id}/executions",
    response_model=StandardListResponse[AutomationExecutionResponse],
    status_code=status.HTTP_200_OK,
    summary="Get automation executions",
    description="Execution history of an automation, newest first, with error codes.",
)
async def get_automation_executions(
    automation_id: UUID,
    service: Annotated[AutomationService, Depends(get_automation_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Page size"),
) -> StandardListResponse[AutomationExecutionResponse]:
    """Get execution history for an automation."""
    if not service.get_automation(automation_id):
        raise_not_found("Automation", str(automation_id))

    skip = (page - 1) * page_size
    executions = service.get_executions(automation_id, skip=skip, limit=page_size)
    total = service.count_executions(automation_id)

    return StandardListResponse(
        data=[AutomationExecutionResponse.model_validate(e) for e in executions],
        meta=build_pagination(total, page, page_size),
        message="Executions retrieved successfully",
    )


@router.get(
    "/{automation_id}/sync-links",
    response_model=StandardListResponse[SyncLinkResponse],
    status_code=status.HTTP_200_OK,
    summary="Get automation sync links",
    description="Source/target record pairings maintained by an automation.",
)
async def get_automation_sync_links(
    automation_id: UUID,
    service: Annotated[AutomationService, Depends(get_automation_service)],
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Page size"),
) -> StandardListResponse[SyncLinkResponse]:
    """Get sync links of an automation, including those of a deleted automation."""
    skip = (page - 1) * page_size
    links = service.get_sync_links(automation_id, skip=skip, limit=page_size)
    total = service.count_sync_links(automation_id)

    return StandardListResponse(
        data=[SyncLinkResponse.model_validate(link) for link in links],
        meta=build_pagination(total, page, page_size),
        message="Sync links retrieved successfully",
    )
