import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import audit, models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..exceptions import UnknownRecordKind
from ..kinds import KINDS, RecordKind, get_kind
from ..search import SearchIndex, get_search_index
from ..services.lifecycle import LifecycleCoordinator

logger = logging.getLogger(__name__)


def _respond(result: schemas.LifecycleResult) -> Response:
    if result.status == 204:
        return Response(status_code=204)
    body = {"message": result.message}
    if result.data is not None:
        body["data"] = result.data
    return JSONResponse(status_code=result.status, content=jsonable_encoder(body))


def _publication(result: schemas.PublicationResult) -> JSONResponse:
    return JSONResponse(status_code=200 if result.status else 400, content=result.model_dump())


def _reorder_summary(reordered: int, failures: list[str]) -> JSONResponse:
    summary = schemas.ReorderSummary(
        message="Records reordered" if not failures else "Unable to reorder some records",
        reordered=reordered,
        failed=len(failures),
        failures=failures,
    )
    return JSONResponse(status_code=200 if not failures else 400, content=summary.model_dump())


def _entries(payload: Any) -> list[dict]:
    if not isinstance(payload, list) or not payload:
        raise HTTPException(status_code=400, detail="Missing or invalid order data")
    if not all(isinstance(entry, dict) for entry in payload):
        raise HTTPException(status_code=400, detail="Invalid item in order data")
    return payload


def build_router(kind: RecordKind) -> APIRouter:
    """Routes for one record kind, nested under its grid or timeline when needed."""

    if kind.nested:
        parent_param = f"{kind.parent_key}_id"
        base = f"/{{exhibit_id}}/{kind.parent.collection}/{{{parent_param}}}/{kind.collection}"
    else:
        parent_param = None
        base = f"/{{exhibit_id}}/{kind.collection}"

    router = APIRouter(prefix="/api/exhibits", tags=[kind.key])

    def parent_scope(request: Request) -> Optional[str]:
        return request.path_params.get(parent_param) if parent_param else None

    def coordinator(
        db: Session = Depends(get_db),
        index: SearchIndex = Depends(get_search_index),
    ) -> LifecycleCoordinator:
        return LifecycleCoordinator(db, kind, index=index)

    @router.post(base, status_code=201)
    def create_record(
        exhibit_id: str,
        payload: Any = Body(None),
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        result = service.create(exhibit_id, payload, parent_id, actor_id=user.id)
        if result.status == 201:
            audit.log_action(db, user.id, f"create_{kind.key}", kind.key, result.data)
        return _respond(result)

    @router.get(base)
    def list_records(
        exhibit_id: str,
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        user: models.User = Depends(get_current_user),
    ):
        return _respond(service.list(exhibit_id, parent_id))

    @router.post(f"{base}/reorder")
    def reorder_records(
        exhibit_id: str,
        payload: Any = Body(None),
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        user: models.User = Depends(get_current_user),
    ):
        failures = []
        entries = _entries(payload)
        for entry in entries:
            if not service.reorder(exhibit_id, entry, parent_id):
                failures.append(str(entry.get("uuid")))
        return _reorder_summary(len(entries) - len(failures), failures)

    @router.get(f"{base}/{{record_id}}")
    def read_record(
        exhibit_id: str,
        record_id: str,
        mode: Optional[str] = Query(None, alias="type"),
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        user: models.User = Depends(get_current_user),
    ):
        if mode == "edit":
            return _respond(service.open_for_edit(exhibit_id, record_id, user.id, parent_id))
        return _respond(service.get(exhibit_id, record_id, parent_id))

    @router.put(f"{base}/{{record_id}}")
    def update_record(
        exhibit_id: str,
        record_id: str,
        payload: Any = Body(None),
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        result = service.update(exhibit_id, record_id, payload, parent_id, actor_id=user.id)
        if result.status == 200:
            audit.log_action(db, user.id, f"update_{kind.key}", kind.key, record_id)
        return _respond(result)

    @router.delete(f"{base}/{{record_id}}", status_code=204)
    def delete_record(
        exhibit_id: str,
        record_id: str,
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        result = service.delete(exhibit_id, record_id, parent_id)
        if result.status == 204:
            audit.log_action(db, user.id, f"delete_{kind.key}", kind.key, record_id)
        return _respond(result)

    @router.post(f"{base}/{{record_id}}/publish")
    def publish_record(
        exhibit_id: str,
        record_id: str,
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        result = service.publish(exhibit_id, record_id, parent_id)
        if result.status:
            audit.log_action(db, user.id, f"publish_{kind.key}", kind.key, record_id)
        return _publication(result)

    @router.post(f"{base}/{{record_id}}/suppress")
    def suppress_record(
        exhibit_id: str,
        record_id: str,
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        db: Session = Depends(get_db),
        user: models.User = Depends(get_current_user),
    ):
        result = service.suppress(exhibit_id, record_id, parent_id)
        if result.status:
            audit.log_action(db, user.id, f"suppress_{kind.key}", kind.key, record_id)
        return _publication(result)

    @router.post(f"{base}/{{record_id}}/unlock")
    def unlock_record(
        exhibit_id: str,
        record_id: str,
        force: bool = False,
        parent_id: Optional[str] = Depends(parent_scope),
        service: LifecycleCoordinator = Depends(coordinator),
        user: models.User = Depends(get_current_user),
    ):
        # force is an administrator override
        unlocked = service.unlock(
            exhibit_id,
            record_id,
            user.id,
            parent_id,
            force=force and bool(user.is_admin),
            is_admin=bool(user.is_admin),
        )
        if not unlocked:
            return JSONResponse(status_code=400, content={"message": f"Unable to unlock {kind.label} record"})
        return JSONResponse(status_code=200, content={"message": f"{kind.label.capitalize()} record unlocked"})

    return router


routers = [build_router(kind) for kind in KINDS.values()]

mixed_router = APIRouter(prefix="/api/exhibits", tags=["reorder"])

# parent id field on a mixed reorder entry, per nested kind
_PARENT_FIELDS = {"grid_item": "grid_id", "timeline_item": "timeline_id"}


@mixed_router.post("/{exhibit_id}/reorder")
def reorder_exhibit_records(
    exhibit_id: str,
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    index: SearchIndex = Depends(get_search_index),
    user: models.User = Depends(get_current_user),
):
    """Reorder headings, items, grids, timelines and nested items in one call."""

    entries = _entries(payload)
    resolved = []
    for entry in entries:
        try:
            kind = get_kind(entry.get("type"))
        except UnknownRecordKind:
            raise HTTPException(status_code=400, detail="Missing or invalid item type")
        parent_field = _PARENT_FIELDS.get(kind.key)
        if parent_field and not entry.get(parent_field):
            raise HTTPException(status_code=400, detail=f"Missing or invalid {parent_field} for {kind.label}")
        resolved.append((kind, entry, entry.get(parent_field) if parent_field else None))

    coordinators: dict[str, LifecycleCoordinator] = {}
    failures = []
    for kind, entry, parent_id in resolved:
        service = coordinators.get(kind.key)
        if service is None:
            service = coordinators[kind.key] = LifecycleCoordinator(db, kind, index=index)
        if not service.reorder(exhibit_id, entry, parent_id):
            failures.append(str(entry.get("uuid")))
    logger.info("exhibit=%s reordered=%s failed=%s", exhibit_id, len(entries) - len(failures), len(failures))
    return _reorder_summary(len(entries) - len(failures), failures)
