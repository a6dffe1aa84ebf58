from typing import List, Literal, Optional

from fastapi import APIRouter, Response

from db import SessionDep
from models import BundleTag, Need, Priority, utcnow
from schemas import NeedCreate, NeedRead, NeedUpdate
from services import ranking, registry

from .auth import CurrentUserRoleDep

router = APIRouter(tags=["needs"])


def _read(need: Need, urgency: Optional[float] = None) -> NeedRead:
    data = NeedRead.model_validate(need)
    data.urgency_score = urgency if urgency is not None else ranking.score(need, utcnow())
    return data


@router.get("/", response_model=List[NeedRead])
def list_needs(
    session: SessionDep,
    priority: Optional[Priority] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    bundle: Optional[BundleTag] = None,
    perishable: Optional[bool] = None,
    service: Optional[bool] = None,
    dueWithin: Optional[int] = None,
    managerId: Optional[int] = None,
    sort: Literal["urgency", "newest", "deadline"] = "urgency",
    limit: Optional[int] = None,
):
    """
    List needs, most urgent first unless another sort is asked for.
    """
    ranked = registry.list_needs(
        session,
        now=utcnow(),
        priority=priority,
        category=category,
        search=search,
        bundle=bundle,
        perishable=perishable,
        service=service,
        due_within=dueWithin,
        manager_id=managerId,
        sort=sort,
        limit=limit,
    )
    return [_read(need, urgency) for need, urgency in ranked]


@router.get("/{need_id}", response_model=NeedRead)
def get_need(need_id: int, session: SessionDep):
    """
    Get a single need by ID.
    """
    return _read(registry.get_need(session, need_id))


@router.post("/", response_model=NeedRead, status_code=201)
def create_need(need_in: NeedCreate, session: SessionDep, current: CurrentUserRoleDep):
    """
    Post a new need. Managers only.
    """
    need = registry.create_need(session, current["role"], current["user"].id, need_in)
    return _read(need)


@router.put("/{need_id}", response_model=NeedRead)
def update_need(need_id: int, need_in: NeedUpdate, session: SessionDep, current: CurrentUserRoleDep):
    """
    Update need metadata. The funded count is never writable here.
    """
    need = registry.update_need(session, current["role"], need_id, need_in)
    return _read(need)


@router.delete("/{need_id}", status_code=204)
def delete_need(need_id: int, session: SessionDep, current: CurrentUserRoleDep):
    registry.delete_need(session, current["role"], need_id)
    return Response(status_code=204)
