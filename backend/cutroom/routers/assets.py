from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from ..core.database import get_session
from ..infrastructure import storage
from ..models import AssetVersionPublic, NotificationPublic
from ..services import notification, versions
from .schemas import DownloadUrlOut

router = APIRouter(prefix="/api/assets", tags=["assets"])


def _public(version) -> AssetVersionPublic:
    return AssetVersionPublic.model_validate(version, from_attributes=True)


# /versions/... routes are declared first so a group literally named "versions" cannot shadow them
@router.get("/versions/{asset_version_id}", response_model=AssetVersionPublic)
def get_version(asset_version_id: UUID, session: Session = Depends(get_session)):
    return _public(versions.get_version(session, asset_version_id))


@router.get("/versions/{asset_version_id}/ancestry", response_model=List[AssetVersionPublic])
def get_ancestry(asset_version_id: UUID, session: Session = Depends(get_session)):
    return [_public(v) for v in versions.ancestry(session, asset_version_id)]


@router.get("/versions/{asset_version_id}/download-url", response_model=DownloadUrlOut)
def get_download_url(asset_version_id: UUID, session: Session = Depends(get_session)):
    version = versions.get_version(session, asset_version_id)
    url, expires_at = storage.generate_download_url(version.storage_key)
    return DownloadUrlOut(url=url, expires_at=expires_at)


@router.get("/versions/{asset_version_id}/notification-history", response_model=List[NotificationPublic])
def get_notification_history(asset_version_id: UUID, session: Session = Depends(get_session)):
    versions.get_version(session, asset_version_id)
    return [NotificationPublic.model_validate(r, from_attributes=True) for r in notification.history(session, asset_version_id)]


@router.get("/{asset_group_key}/lineage", response_model=List[AssetVersionPublic])
def get_lineage(asset_group_key: str, session: Session = Depends(get_session)):
    return [_public(v) for v in versions.list_lineage(session, asset_group_key)]


@router.get("/{asset_group_key}/latest", response_model=AssetVersionPublic)
def get_latest(asset_group_key: str, session: Session = Depends(get_session)):
    latest = versions.get_latest(session, asset_group_key)
    if latest is None:
        raise HTTPException(status_code=404, detail=f"Asset group {asset_group_key!r} has no versions")
    return _public(latest)
