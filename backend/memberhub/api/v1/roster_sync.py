"""
API endpoints for external roster synchronization
"""

from fastapi import APIRouter, HTTPException, Depends, status, Request
from typing import List, Optional
import logging

from memberhub.core.circuit_breaker import CircuitBreakerOpenError
from memberhub.core.exceptions import LocalStoreUnavailableError, SyncAlreadyRunningError
from memberhub.integrations.roster.error_handler import RosterError
from memberhub.services.roster_sync.control import SyncControl
from memberhub.services.roster_sync.types import SyncOptions
from memberhub.schemas.roster_sync import (
    SyncRunRequest,
    SyncRunResponse,
    SyncRunRecordResponse,
    SyncStatusResponse,
    MemberValidationRequest,
    MemberValidationResponse,
    ConnectionTestResponse
)

logger = logging.getLogger(__name__)
router = APIRouter()


def get_sync_control(request: Request) -> SyncControl:
    control = getattr(request.app.state, "sync_control", None)
    if control is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Roster sync is not configured"
        )
    return control


@router.post("/run", response_model=SyncRunResponse)
async def run_sync(
    run_request: Optional[SyncRunRequest] = None,
    control: SyncControl = Depends(get_sync_control)
):
    """Run a roster sync now and return its summary"""

    run_request = run_request or SyncRunRequest()
    defaults = control.default_options()
    options = SyncOptions(
        push_pending_to_external=(
            run_request.push_pending_to_external
            if run_request.push_pending_to_external is not None
            else defaults.push_pending_to_external
        ),
        timeout_seconds=run_request.timeout_seconds or defaults.timeout_seconds
    )

    try:
        run = await control.trigger_run(options)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LocalStoreUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except Exception as e:
        logger.error(f"Manual roster sync failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Sync failed: {str(e)}"
        )

    return SyncRunResponse(**run.to_dict())


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(control: SyncControl = Depends(get_sync_control)):
    """Get the sync engine status"""
    return SyncStatusResponse(**control.get_status())


@router.get("/runs", response_model=List[SyncRunRecordResponse])
async def list_sync_runs(
    limit: int = 20,
    control: SyncControl = Depends(get_sync_control)
):
    """List persisted sync runs, newest first"""
    if limit < 1 or limit > 100:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="limit must be between 1 and 100"
        )

    records = await control.status_store.recent_runs(limit)
    return [SyncRunRecordResponse.model_validate(record) for record in records]


@router.post("/validate-member", response_model=MemberValidationResponse)
async def validate_member(
    validation_request: MemberValidationRequest,
    control: SyncControl = Depends(get_sync_control)
):
    """Check whether the roster lists a member"""

    try:
        result = await control.validate_member(
            national_id=validation_request.national_id,
            registration_number=validation_request.registration_number
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (CircuitBreakerOpenError, RosterError) as e:
        logger.warning(f"Member validation unavailable: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return MemberValidationResponse(**result)


@router.get("/test-connection", response_model=ConnectionTestResponse)
async def test_connection(control: SyncControl = Depends(get_sync_control)):
    """Probe the database and the roster"""
    return ConnectionTestResponse(**await control.test_connection())
