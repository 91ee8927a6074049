from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlmodel import Session

from ..core.database import get_session
from ..models import AssetVersionPublic, WorkflowAuditPublic
from ..services import processing, workflow
from .deps import require_actor
from .schemas import ApproveIn, AssignIn, ProcessingOut, PublishIn, RejectIn, TransitionIn

router = APIRouter(prefix="/api/workflow", tags=["workflow"])


def _public(version) -> AssetVersionPublic:
    return AssetVersionPublic.model_validate(version, from_attributes=True)


@router.post("/{asset_version_id}/assign", response_model=AssetVersionPublic)
def assign(
    asset_version_id: UUID,
    payload: AssignIn,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    return _public(
        workflow.assign(
            session,
            asset_version_id,
            assignee=payload.assignee,
            actor=actor,
            expected_status=payload.expected_status,
        )
    )


@router.post("/{asset_version_id}/reassign", response_model=AssetVersionPublic)
def reassign(
    asset_version_id: UUID,
    payload: AssignIn,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    return _public(
        workflow.reassign(
            session,
            asset_version_id,
            assignee=payload.assignee,
            actor=actor,
            expected_status=payload.expected_status,
        )
    )


@router.post("/{asset_version_id}/send-for-review", response_model=AssetVersionPublic)
def send_for_review(
    asset_version_id: UUID,
    payload: Optional[TransitionIn] = None,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    expected = payload.expected_status if payload else None
    return _public(workflow.send_for_review(session, asset_version_id, actor=actor, expected_status=expected))


@router.post("/{asset_version_id}/approve", response_model=AssetVersionPublic)
def approve(
    asset_version_id: UUID,
    payload: Optional[ApproveIn] = None,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    payload = payload or ApproveIn()
    return _public(
        workflow.approve(
            session,
            asset_version_id,
            actor=actor,
            notes=payload.notes,
            auto_publish=payload.auto_publish,
            request_processing=payload.request_processing,
            expected_status=payload.expected_status,
        )
    )


@router.post("/{asset_version_id}/reject", response_model=AssetVersionPublic)
def reject(
    asset_version_id: UUID,
    payload: Optional[RejectIn] = None,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    payload = payload or RejectIn()
    return _public(
        workflow.reject(
            session,
            asset_version_id,
            reason=payload.reason,
            suggestions=payload.suggestions,
            actor=actor,
            expected_status=payload.expected_status,
        )
    )


@router.post("/{asset_version_id}/publish", response_model=AssetVersionPublic)
def publish(
    asset_version_id: UUID,
    payload: Optional[PublishIn] = None,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    payload = payload or PublishIn()
    return _public(
        workflow.publish(
            session,
            asset_version_id,
            actor=actor,
            request_processing=payload.request_processing,
            expected_status=payload.expected_status,
        )
    )


@router.post("/{asset_version_id}/request-processing", response_model=ProcessingOut)
def request_processing(
    asset_version_id: UUID,
    actor: str = Depends(require_actor),
    session: Session = Depends(get_session),
):
    version = processing.request_processing(session, asset_version_id)
    return ProcessingOut(requested=True, processing_requested_at=version.processing_requested_at)


@router.get("/{asset_version_id}/history", response_model=List[WorkflowAuditPublic])
def history(asset_version_id: UUID, session: Session = Depends(get_session)):
    return [WorkflowAuditPublic.model_validate(e, from_attributes=True) for e in workflow.history(session, asset_version_id)]
