from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..auth import get_current_user, require_admin
from ..database import get_db
from ..exceptions import StoreFailure
from ..search import SearchIndex, get_search_index
from ..services import exhibits as exhibit_service
from ..services.reconcile import reconcile_publication
from .records import _respond

router = APIRouter(prefix="/api/exhibits", tags=["exhibits"])


@router.post("", response_model=schemas.ExhibitOut, status_code=201)
def create_exhibit(
    payload: schemas.ExhibitCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        exhibit = exhibit_service.create_exhibit(db, payload, actor_id=user.id)
    except StoreFailure as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    audit.log_action(db, user.id, "create_exhibit", "exhibit", exhibit.uuid)
    return exhibit


@router.get("", response_model=List[schemas.ExhibitOut])
def list_exhibits(
    published: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return exhibit_service.list_exhibits(db, published_only=published)


@router.post("/reorder")
def reorder_exhibits(
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if not isinstance(payload, list) or not payload:
        raise HTTPException(status_code=400, detail="Missing or invalid order data")
    summary = exhibit_service.reorder_exhibits(db, payload)
    if summary.reordered:
        audit.log_action(db, user.id, "reorder_exhibits", "exhibit", None, {"reordered": summary.reordered})
    return JSONResponse(status_code=200 if not summary.failed else 400, content=summary.model_dump())


@router.get("/{exhibit_id}", response_model=schemas.ExhibitOut)
def read_exhibit(
    exhibit_id: UUID,
    mode: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if mode == "edit":
        return _respond(exhibit_service.open_exhibit_for_edit(db, exhibit_id, user.id))
    exhibit = exhibit_service.get_exhibit(db, exhibit_id)
    if exhibit is None:
        raise HTTPException(status_code=404, detail="Exhibit not found")
    return exhibit


@router.put("/{exhibit_id}")
def update_exhibit(
    exhibit_id: UUID,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
    user: models.User = Depends(get_current_user),
):
    result = exhibit_service.update_exhibit(db, exhibit_id, payload, index, actor_id=user.id)
    if result.status == 200:
        audit.log_action(db, user.id, "update_exhibit", "exhibit", exhibit_id)
    return _respond(result)


@router.delete("/{exhibit_id}", status_code=204)
def delete_exhibit(
    exhibit_id: UUID,
    db: Session = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
    user: models.User = Depends(get_current_user),
):
    result = exhibit_service.delete_exhibit(db, exhibit_id, index)
    if result.status == 204:
        audit.log_action(db, user.id, "delete_exhibit", "exhibit", exhibit_id)
    return _respond(result)


@router.post("/{exhibit_id}/unlock")
def unlock_exhibit(
    exhibit_id: UUID,
    force: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    # force is an administrator override
    unlocked = exhibit_service.unlock_exhibit(
        db,
        exhibit_id,
        user.id,
        force=force and bool(user.is_admin),
        is_admin=bool(user.is_admin),
    )
    if not unlocked:
        return JSONResponse(status_code=400, content={"message": "Unable to unlock exhibit record"})
    return JSONResponse(status_code=200, content={"message": "Exhibit record unlocked"})


@router.post("/{exhibit_id}/publish")
def publish_exhibit(
    exhibit_id: UUID,
    db: Session = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
    user: models.User = Depends(get_current_user),
):
    result = exhibit_service.publish_exhibit(db, exhibit_id, index)
    if result["status"]:
        audit.log_action(db, user.id, "publish_exhibit", "exhibit", exhibit_id, {"failed": result["failed"]})
    return JSONResponse(status_code=200 if result["status"] else 400, content=result)


@router.post("/{exhibit_id}/suppress")
def suppress_exhibit(
    exhibit_id: UUID,
    db: Session = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
    user: models.User = Depends(get_current_user),
):
    result = exhibit_service.suppress_exhibit(db, exhibit_id, index)
    if result["status"]:
        audit.log_action(db, user.id, "suppress_exhibit", "exhibit", exhibit_id, {"failed": result["failed"]})
    return JSONResponse(status_code=200 if result["status"] else 400, content=result)


@router.post("/{exhibit_id}/reconcile", response_model=schemas.ReconcileReport)
def reconcile_exhibit(
    exhibit_id: UUID,
    repair: bool = False,
    db: Session = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
    admin: models.User = Depends(require_admin),
):
    if exhibit_service.get_exhibit(db, exhibit_id) is None:
        raise HTTPException(status_code=404, detail="Exhibit not found")
    report = reconcile_publication(db, index, exhibit_id=exhibit_id, repair=repair)
    if repair and report.findings:
        audit.log_action(
            db,
            admin.id,
            "reconcile_exhibit",
            "exhibit",
            exhibit_id,
            {"findings": len(report.findings)},
        )
    return report
