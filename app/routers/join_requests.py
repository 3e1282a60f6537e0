from typing import List
from fastapi import APIRouter, Depends, Response, status

from ..dependencies import get_actor, get_admission
from ..models import JoinRequest
from ..services.context import ActorContext
from ..services.join_requests import JoinRequestAdmission

router = APIRouter(prefix="/join-requests", tags=["join-requests"])


@router.get("/mine", response_model=List[JoinRequest])
async def my_join_requests(
    actor: ActorContext = Depends(get_actor),
    admission: JoinRequestAdmission = Depends(get_admission)
):
    """Pending requests the caller has sent."""
    return await admission.pending_for_user(actor)


@router.post("/{request_id}/approve", response_model=JoinRequest)
async def approve_join_request(
    request_id: str,
    actor: ActorContext = Depends(get_actor),
    admission: JoinRequestAdmission = Depends(get_admission)
):
    return await admission.approve(actor, request_id)


@router.post("/{request_id}/reject", response_model=JoinRequest)
async def reject_join_request(
    request_id: str,
    actor: ActorContext = Depends(get_actor),
    admission: JoinRequestAdmission = Depends(get_admission)
):
    return await admission.reject(actor, request_id)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_join_request(
    request_id: str,
    actor: ActorContext = Depends(get_actor),
    admission: JoinRequestAdmission = Depends(get_admission)
):
    await admission.cancel(actor, request_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
