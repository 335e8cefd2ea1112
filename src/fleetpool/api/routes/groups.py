"""Group administration endpoints (operator role).

GET    /groups                               → groups with free-unit counts for a day
POST   /groups                               → bulk-create N identical units (201)
POST   /groups/convert                       → pool existing standalone units (201)
GET    /groups/duplicates                    → standalone units that look identical
GET    /groups/{id}                          → group, policy and members
PATCH  /groups/{id}                          → rename
DELETE /groups/{id}                          → dissolve; members become standalone
PATCH  /groups/{id}/policy                   → partial policy update
POST   /groups/{id}/bulk-update              → propagate fields to members
POST   /groups/{id}/block-dates              → block a range on members (201)
POST   /groups/{id}/members                  → attach a standalone unit
DELETE /groups/{id}/members/{unit_id}        → detach a unit
"""

from __future__ import annotations

from datetime import date
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Path, Query
from pydantic import BaseModel, ConfigDict, Field

from fleetpool.api.errors import http_error
from fleetpool.domain.blocks import block_dates
from fleetpool.domain.errors import FleetpoolError
from fleetpool.domain.group_policy import DEFAULT_NAMING_PATTERN, GroupPolicy
from fleetpool.domain.groups import (
    MAX_GROUP_QUANTITY,
    add_unit_to_group,
    bulk_update,
    convert_to_group,
    create_group,
    dissolve_group,
    find_duplicate_candidates,
    get_group,
    list_groups,
    remove_from_group,
    rename_group,
    update_group_policy,
)

router = APIRouter(prefix="/groups", tags=["groups"])

Strategy = Literal["sequential", "random", "least_used"]


# ── Schemas ───────────────────────────────────────────────────────────────────


class PolicyFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assign_strategy: Strategy = "sequential"
    naming_pattern: str = DEFAULT_NAMING_PATTERN
    share_pricing: bool = True
    share_specifications: bool = True
    share_images: bool = True

    def to_policy(self) -> GroupPolicy:
        return GroupPolicy.from_row(self.model_dump())


class BaseUnitFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    price_per_day: int = Field(..., ge=0)
    price_per_week: int | None = Field(None, ge=0)
    price_per_month: int | None = Field(None, ge=0)
    description: str | None = None
    specifications: dict[str, Any] | None = None
    images: list[str] | None = None
    is_available: bool = True


class CreateGroupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    vehicle_type: str
    quantity: int = Field(..., ge=1, le=MAX_GROUP_QUANTITY)
    base_unit: BaseUnitFields
    individual_names: list[str] | None = None
    policy: PolicyFields = Field(default_factory=PolicyFields)


class ConvertRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit_ids: list[str] = Field(..., min_length=1)
    name: str
    policy: PolicyFields = Field(default_factory=PolicyFields)


class UpdatePolicyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    assign_strategy: Strategy | None = None
    naming_pattern: str | None = None
    share_pricing: bool | None = None
    share_specifications: bool | None = None
    share_images: bool | None = None


class BulkUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    price_per_day: int | None = Field(None, ge=0)
    price_per_week: int | None = Field(None, ge=0)
    price_per_month: int | None = Field(None, ge=0)
    specifications: dict[str, Any] | None = None
    images: list[str] | None = None
    description: str | None = None
    is_available: bool | None = None
    unit_ids: list[str] | None = None


class BlockDatesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_date: date
    end_date: date
    unit_ids: list[str] | None = None
    reason: str | None = None


class AddMemberRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    unit_id: str


class RenameGroupRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)


# ── Routes ────────────────────────────────────────────────────────────────────


@router.get("")
def list_groups_route(
    on: date | None = Query(None, description="Day to count free units for (default today)"),
) -> dict:
    groups = list_groups(on=on)
    return {"groups": groups, "count": len(groups)}


@router.post("", status_code=201)
def create_group_route(body: CreateGroupRequest) -> dict:
    try:
        return create_group(
            name=body.name,
            vehicle_type=body.vehicle_type,
            quantity=body.quantity,
            base_unit=body.base_unit.model_dump(),
            individual_names=body.individual_names,
            policy=body.policy.to_policy(),
        )
    except FleetpoolError as exc:
        raise http_error(exc) from exc


@router.post("/convert", status_code=201)
def convert_route(body: ConvertRequest) -> dict:
    try:
        return convert_to_group(body.unit_ids, name=body.name, policy=body.policy.to_policy())
    except FleetpoolError as exc:
        raise http_error(exc) from exc


@router.get("/duplicates")
def duplicates_route() -> dict:
    clusters = find_duplicate_candidates()
    return {
        "potential_groups": clusters,
        "total_groups": len(clusters),
        "total_duplicates": sum(c["count"] for c in clusters),
    }


@router.get("/{group_id}")
def get_group_route(group_id: str = Path(..., description="Group ID")) -> dict:
    try:
        return get_group(group_id)
    except FleetpoolError as exc:
        raise http_error(exc) from exc


@router.patch("/{group_id}")
def rename_group_route(
    group_id: str = Path(..., description="Group ID"),
    body: RenameGroupRequest = ...,
) -> dict:
    try:
        return rename_group(group_id, body.name)
    except FleetpoolError as exc:
        raise http_error(exc) from exc


@router.delete("/{group_id}")
def dissolve_group_route(group_id: str = Path(..., description="Group ID")) -> dict:
    try:
        return dissolve_group(group_id)
    except FleetpoolError as exc:
        raise http_error(exc) from exc


@router.patch("/{group_id}/policy")
def update_policy_route(
    group_id: str = Path(..., description="Group ID"),
    body: UpdatePolicyRequest = ...,
) -> dict:
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        policy = update_group_policy(group_id, **changes)
    except FleetpoolError as exc:
        raise http_error(exc) from exc
    return policy.to_row()


@router.post("/{group_id}/bulk-update")
def bulk_update_route(
    group_id: str = Path(..., description="Group ID"),
    body: BulkUpdateRequest = ...,
) -> dict:
    """Propagate fields to members; 422 nothing_to_apply if policy blocks all."""
    fields = body.model_dump(exclude_none=True, exclude={"unit_ids"})
    try:
        applied = bulk_update(group_id, fields, unit_ids=body.unit_ids)
    except FleetpoolError as exc:
        raise http_error(exc) from exc
    return {"group_id": group_id, "applied_count": applied}


@router.post("/{group_id}/block-dates", status_code=201)
def block_dates_route(
    group_id: str = Path(..., description="Group ID"),
    body: BlockDatesRequest = ...,
) -> dict:
    try:
        block_ids = block_dates(
            group_id=group_id,
            unit_ids=body.unit_ids,
            start_date=body.start_date,
            end_date=body.end_date,
            reason=body.reason,
        )
    except FleetpoolError as exc:
        raise http_error(exc) from exc
    return {"group_id": group_id, "block_ids": block_ids}


@router.post("/{group_id}/members")
def add_member_route(
    group_id: str = Path(..., description="Group ID"),
    body: AddMemberRequest = ...,
) -> dict:
    try:
        return add_unit_to_group(group_id, body.unit_id)
    except FleetpoolError as exc:
        raise http_error(exc) from exc


@router.delete("/{group_id}/members/{unit_id}")
def remove_member_route(
    group_id: str = Path(..., description="Group ID"),
    unit_id: str = Path(..., description="Unit ID"),
) -> dict:
    try:
        return remove_from_group(unit_id, group_id=group_id)
    except FleetpoolError as exc:
        raise http_error(exc) from exc
