from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import audit, models
from ..auth import get_current_user, require_admin
from ..database import get_db
from ..services.recycle import RecycleManager

router = APIRouter(prefix="/api/recycle", tags=["recycle"])


def _respond(result):
    if result.status == 204:
        return Response(status_code=204)
    return JSONResponse(
        status_code=result.status,
        content=jsonable_encoder({"message": result.message, "data": result.data}),
    )


@router.get("")
def list_recycled(
    exhibit_id: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return _respond(RecycleManager(db).get_recycled(exhibit_id))


@router.put("/{exhibit_id}/{record_id}", status_code=204)
def restore_record(
    exhibit_id: str,
    record_id: str,
    record_type: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    result = RecycleManager(db).restore(exhibit_id, record_id, record_type)
    if result.status == 204:
        audit.log_action(db, user.id, "restore_record", record_type, record_id)
    return _respond(result)


@router.delete("/{exhibit_id}/{record_id}", status_code=204)
def purge_record(
    exhibit_id: str,
    record_id: str,
    record_type: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    result = RecycleManager(db).delete_permanently(exhibit_id, record_id, record_type)
    if result.status == 204:
        audit.log_action(db, admin.id, "purge_record", record_type, record_id)
    return _respond(result)


@router.post("", status_code=204)
def empty_recycle_bin(
    exhibit_id: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    result = RecycleManager(db).delete_all(exhibit_id)
    if result.status == 204:
        audit.log_action(db, admin.id, "empty_recycle_bin", "recycle", None, {"purged": result.data})
    return _respond(result)
