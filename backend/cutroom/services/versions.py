"""Asset version graph: identity, numbering and lineage of asset versions.

Numbers come from the group's counter row (``AssetGroup.last_version_number``),
read under ``SELECT ... FOR UPDATE`` while the caller holds the in-process
group lock. That makes a child's number equal ``parent.version_number + 1``
whenever the parent is the latest version, and keeps numbers unique when two
children of the same parent finish at the same time.
"""
from __future__ import annotations

import logging
from typing import List, Optional
from uuid import UUID

from sqlmodel import Session, select

from cutroom.core.errors import DuplicateOriginal, InvalidParent, VersionNotFound
from cutroom.models import AssetGroup, AssetVersion, VersionKind

log = logging.getLogger(__name__)


def get_version(session: Session, version_id: UUID) -> AssetVersion:
    version = session.get(AssetVersion, version_id)
    if version is None:
        raise VersionNotFound(version_id)
    return version


def list_lineage(session: Session, asset_group_key: str) -> List[AssetVersion]:
    stmt = (
        select(AssetVersion)
        .where(AssetVersion.asset_group_key == asset_group_key)
        .order_by(AssetVersion.version_number.asc())
    )
    return list(session.exec(stmt).all())


def get_latest(session: Session, asset_group_key: str) -> Optional[AssetVersion]:
    stmt = (
        select(AssetVersion)
        .where(AssetVersion.asset_group_key == asset_group_key)
        .order_by(AssetVersion.version_number.desc())
        .limit(1)
    )
    return session.exec(stmt).first()


def ancestry(session: Session, version_id: UUID) -> List[AssetVersion]:
    """The version followed by its parent chain up to the root.

    Stops quietly at a parent that no longer exists.
    """
    chain = [get_version(session, version_id)]
    seen = {chain[0].id}
    while chain[-1].parent_version_id is not None:
        parent = session.get(AssetVersion, chain[-1].parent_version_id)
        if parent is None or parent.id in seen:
            break
        seen.add(parent.id)
        chain.append(parent)
    return chain


def next_version_number(session: Session, asset_group_key: str) -> int:
    """Advisory number the next version of the group would get right now."""
    group = session.get(AssetGroup, asset_group_key)
    return (group.last_version_number if group else 0) + 1


def _group_has_original(session: Session, asset_group_key: str, group: Optional[AssetGroup]) -> bool:
    if group is not None and group.original_version_id is not None:
        return True
    stmt = (
        select(AssetVersion.id)
        .where(AssetVersion.asset_group_key == asset_group_key)
        .where(AssetVersion.version_kind == VersionKind.original)
        .limit(1)
    )
    return session.exec(stmt).first() is not None


def resolve_kind(
    session: Session,
    asset_group_key: str,
    parent_version_id: Optional[UUID],
    declared_kind: Optional[VersionKind] = None,
) -> VersionKind:
    """Validate a lineage request and return the kind the new version will carry.

    Raises InvalidParent or DuplicateOriginal; never writes.
    """
    kind = VersionKind(declared_kind) if declared_kind else None

    if parent_version_id is None:
        if kind is not None and kind is not VersionKind.original:
            raise InvalidParent(
                f"A {kind.value} version must cite a parent version",
                {"asset_group_key": asset_group_key, "version_kind": kind.value},
            )
        if _group_has_original(session, asset_group_key, session.get(AssetGroup, asset_group_key)):
            raise DuplicateOriginal(asset_group_key)
        return VersionKind.original

    if kind is VersionKind.original:
        raise InvalidParent(
            "An original version cannot cite a parent version",
            {"asset_group_key": asset_group_key, "parent_version_id": str(parent_version_id)},
        )
    parent = session.get(AssetVersion, parent_version_id)
    if parent is None or parent.asset_group_key != asset_group_key:
        raise InvalidParent(
            f"Parent version {parent_version_id} does not exist in asset group {asset_group_key!r}",
            {"asset_group_key": asset_group_key, "parent_version_id": str(parent_version_id)},
        )
    return kind or VersionKind.edited


def _lock_group(session: Session, asset_group_key: str) -> AssetGroup:
    stmt = (
        select(AssetGroup)
        .where(AssetGroup.key == asset_group_key)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    group = session.exec(stmt).first()
    if group is None:
        group = AssetGroup(key=asset_group_key)
        session.add(group)
        session.flush()
    return group


def mint_version(
    session: Session,
    *,
    asset_group_key: str,
    parent_version_id: Optional[UUID] = None,
    declared_kind: Optional[VersionKind] = None,
    **attrs,
) -> AssetVersion:
    """Create the next version of a group inside the caller's transaction.

    The caller must hold ``group_locks`` for ``asset_group_key`` until it
    commits; this function flushes but never commits.
    """
    group = _lock_group(session, asset_group_key)
    kind = resolve_kind(session, asset_group_key, parent_version_id, declared_kind)

    number = group.last_version_number + 1
    version = AssetVersion(
        asset_group_key=asset_group_key,
        version_number=number,
        version_kind=kind,
        parent_version_id=parent_version_id,
        **attrs,
    )
    group.last_version_number = number
    if kind is VersionKind.original:
        group.original_version_id = version.id
    session.add(version)
    session.add(group)
    session.flush()

    log.info(
        "event=version.minted asset_group_key=%s version_number=%s kind=%s parent=%s",
        asset_group_key,
        number,
        kind.value,
        parent_version_id,
    )
    return version
