"""FastAPI app exposing the organizer's views, mutations and drag session.

Endpoints are ``async`` so every request runs on the event loop thread; the
organizer itself is single-threaded apart from its autosave timers.
"""

from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from ..drag import DropTarget
from ..errors import (
    CannotDeleteLastStage,
    InvalidTarget,
    NotFound,
    OrganizerError,
    Unauthorized,
)
from ..locator import Locator
from ..organizer import Organizer


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class LocatorModel(BaseModel):
    kind: str
    space_id: Optional[str] = None
    group_id: Optional[str] = None
    collection_id: Optional[str] = None
    stage: Optional[int] = None
    status: Optional[str] = None

    def to_locator(self) -> Locator:
        return Locator.from_dict(self.model_dump())


class CreateSpaceRequest(BaseModel):
    name: str
    color: str = "bg-gray-500"
    icon: Optional[str] = None
    index: Optional[int] = None


class CreateGroupRequest(BaseModel):
    name: str
    index: Optional[int] = None


class CreateCollectionRequest(BaseModel):
    name: str
    group_id: Optional[str] = None
    index: Optional[int] = None


class CreateItemRequest(BaseModel):
    title: str
    description: str = ""
    status: str = "todo"
    priority: Optional[str] = None
    assignee: Optional[str] = None
    index: Optional[int] = None


class UpdateItemRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class RenameRequest(BaseModel):
    name: str


class MoveRequest(BaseModel):
    entity_id: str
    to: LocatorModel
    index: Optional[int] = None
    source: Optional[LocatorModel] = None


class SubtaskRequest(BaseModel):
    title: str


class CreatePipelineItemRequest(BaseModel):
    name: str
    stage: int = 1
    title: Optional[str] = None
    description: str = ""
    domain: Optional[str] = None
    repo_url: Optional[str] = None
    notes: Optional[str] = None
    is_mobile_business: bool = False


class UpdatePipelineItemRequest(BaseModel):
    name: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    domain: Optional[str] = None
    repo_url: Optional[str] = None
    notes: Optional[str] = None
    is_mobile_business: Optional[bool] = None
    metadata: Optional[dict[str, Any]] = None


class MoveToStageRequest(BaseModel):
    stage: int


class InsertStageRequest(BaseModel):
    after: int
    title: str
    short_title: Optional[str] = None
    instructions: Optional[str] = None


class UpdateStageRequest(BaseModel):
    title: Optional[str] = None
    short_title: Optional[str] = None
    instructions: Optional[str] = None


class PickUpRequest(BaseModel):
    entity_id: str


class HoverRequest(BaseModel):
    locator: LocatorModel
    index: Optional[int] = None


class DragResponse(BaseModel):
    session: dict[str, Any]


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

_STATUS_CODES: tuple[tuple[type[OrganizerError], int], ...] = (
    (NotFound, 404),
    (InvalidTarget, 422),
    (CannotDeleteLastStage, 409),
    (Unauthorized, 403),
)


@contextmanager
def _http_errors() -> Iterator[None]:
    try:
        yield
    except OrganizerError as exc:
        status = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 400)
        raise HTTPException(status_code=status, detail=exc.to_dict()) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail={"code": "invalid_request", "message": str(exc)}) from exc


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_organizer_router(get_organizer: Any) -> APIRouter:
    """Create the organizer API router.

    Parameters
    ----------
    get_organizer:
        A zero-argument callable returning the :class:`Organizer` to serve.
    """
    router = APIRouter(prefix="/api")

    # ------------------------------------------------------------------
    # Workspace tree
    # ------------------------------------------------------------------

    @router.get("/tree", tags=["tree"])
    async def get_outline() -> dict[str, Any]:
        return {"spaces": get_organizer().outline()}

    @router.get("/tree/collections/{collection_id}/board", tags=["tree"])
    async def get_collection_board(
        collection_id: str,
        search: Optional[str] = Query(None),
        sort: str = Query("position"),
    ) -> dict[str, Any]:
        with _http_errors():
            return get_organizer().collection_board(collection_id, search=search, sort=sort)

    @router.post("/tree/items/query", tags=["tree"])
    async def query_items(
        locator: LocatorModel,
        status: Optional[str] = Query(None),
        search: Optional[str] = Query(None),
        sort: str = Query("position"),
    ) -> dict[str, Any]:
        organizer = get_organizer()
        with _http_errors():
            target = locator.to_locator()
            items = organizer.items_in(target, status=status, search=search, sort=sort)
            return {"items": items, "total": organizer.count_in(target)}

    @router.post("/tree/spaces", status_code=201, tags=["tree"])
    async def create_space(body: CreateSpaceRequest) -> dict[str, Any]:
        with _http_errors():
            space = get_organizer().add_space(body.name, color=body.color, icon=body.icon, index=body.index)
        return {"space": space.to_dict()}

    @router.post("/tree/spaces/{space_id}/groups", status_code=201, tags=["tree"])
    async def create_group(space_id: str, body: CreateGroupRequest) -> dict[str, Any]:
        with _http_errors():
            group = get_organizer().add_group(space_id, body.name, index=body.index)
        return {"group": group.to_dict()}

    @router.post("/tree/spaces/{space_id}/collections", status_code=201, tags=["tree"])
    async def create_collection(space_id: str, body: CreateCollectionRequest) -> dict[str, Any]:
        with _http_errors():
            collection = get_organizer().add_collection(
                space_id, body.name, group_id=body.group_id, index=body.index
            )
        return {"collection": collection.to_dict()}

    @router.post("/tree/collections/{collection_id}/items", status_code=201, tags=["tree"])
    async def create_item(collection_id: str, body: CreateItemRequest) -> dict[str, Any]:
        with _http_errors():
            item = get_organizer().add_item(
                collection_id,
                body.title,
                description=body.description,
                status=body.status,
                priority=body.priority,
                assignee=body.assignee,
                index=body.index,
            )
        return {"item": item.to_dict()}

    @router.patch("/tree/items/{item_id}", tags=["tree"])
    async def update_item(item_id: str, body: UpdateItemRequest) -> dict[str, Any]:
        with _http_errors():
            item = get_organizer().update_item(item_id, body.model_dump(exclude_unset=True))
        return {"item": item.to_dict()}

    @router.post("/tree/move", tags=["tree"])
    async def move_entity(body: MoveRequest) -> dict[str, Any]:
        organizer = get_organizer()
        with _http_errors():
            target = body.to.to_locator()
            if body.source is not None:
                moved = organizer.move_item(body.entity_id, body.source.to_locator(), target, body.index)
            else:
                moved = organizer.move(body.entity_id, target, body.index)
        return {"moved": moved}

    @router.post("/tree/{entity_id}/toggle", tags=["tree"])
    async def toggle_entity(entity_id: str) -> dict[str, Any]:
        organizer = get_organizer()
        with _http_errors():
            kind = organizer.tree.entity_kind(entity_id).value
            if kind == "space":
                is_open = organizer.toggle_space(entity_id)
            elif kind == "group":
                is_open = organizer.toggle_group(entity_id)
            else:
                raise InvalidTarget(f"A {kind} cannot be expanded or collapsed", entity_id=entity_id)
        return {"entity_id": entity_id, "is_open": is_open}

    @router.post("/tree/{entity_id}/rename", tags=["tree"])
    async def rename_entity(entity_id: str, body: RenameRequest) -> dict[str, Any]:
        with _http_errors():
            get_organizer().rename(entity_id, body.name)
        return {"entity_id": entity_id, "name": body.name}

    @router.delete("/tree/{entity_id}", tags=["tree"])
    async def delete_entity(entity_id: str) -> dict[str, Any]:
        with _http_errors():
            removed = get_organizer().delete(entity_id)
        return {"deleted": entity_id, "items_removed": removed}

    # ------------------------------------------------------------------
    # Subtasks (work items and pipeline items)
    # ------------------------------------------------------------------

    @router.post("/items/{item_id}/subtasks", status_code=201, tags=["subtasks"])
    async def add_subtask(item_id: str, body: SubtaskRequest) -> dict[str, Any]:
        with _http_errors():
            sub = get_organizer().add_subtask(item_id, body.title)
        return {"subtask": sub.to_dict()}

    @router.post("/items/{item_id}/subtasks/{subtask_id}/toggle", tags=["subtasks"])
    async def toggle_subtask(item_id: str, subtask_id: str) -> dict[str, Any]:
        with _http_errors():
            sub = get_organizer().toggle_subtask(item_id, subtask_id)
        return {"subtask": sub.to_dict()}

    @router.delete("/items/{item_id}/subtasks/{subtask_id}", tags=["subtasks"])
    async def remove_subtask(item_id: str, subtask_id: str) -> dict[str, Any]:
        with _http_errors():
            sub = get_organizer().remove_subtask(item_id, subtask_id)
        return {"removed": sub.to_dict()}

    # ------------------------------------------------------------------
    # Stage pipeline
    # ------------------------------------------------------------------

    @router.get("/pipeline", tags=["pipeline"])
    async def get_pipeline_board(
        search: Optional[str] = Query(None),
        sort: str = Query("position"),
    ) -> dict[str, Any]:
        with _http_errors():
            return get_organizer().pipeline_board(search=search, sort=sort)

    @router.get("/pipeline/archived", tags=["pipeline"])
    async def get_archived(search: Optional[str] = Query(None)) -> dict[str, Any]:
        items = get_organizer().archived_items(search=search)
        return {"items": items, "total": len(items)}

    @router.get("/pipeline/stages/{stage_number}/items", tags=["pipeline"])
    async def get_stage_items(
        stage_number: int,
        search: Optional[str] = Query(None),
        sort: str = Query("position"),
    ) -> dict[str, Any]:
        with _http_errors():
            items = get_organizer().items_at_stage(stage_number, search=search, sort=sort)
        return {"items": items, "total": len(items)}

    @router.post("/pipeline/items", status_code=201, tags=["pipeline"])
    async def create_pipeline_item(body: CreatePipelineItemRequest) -> dict[str, Any]:
        fields = body.model_dump(exclude={"name", "stage"})
        with _http_errors():
            item = get_organizer().add_pipeline_item(body.name, stage=body.stage, **fields)
        return {"item": item.to_dict()}

    @router.patch("/pipeline/items/{item_id}", tags=["pipeline"])
    async def update_pipeline_item(item_id: str, body: UpdatePipelineItemRequest) -> dict[str, Any]:
        with _http_errors():
            item = get_organizer().update_pipeline_item(item_id, body.model_dump(exclude_unset=True))
        return {"item": item.to_dict()}

    @router.post("/pipeline/items/{item_id}/move", tags=["pipeline"])
    async def move_pipeline_item(item_id: str, body: MoveToStageRequest) -> dict[str, Any]:
        with _http_errors():
            moved = get_organizer().move_pipeline_item(item_id, body.stage)
        return {"moved": moved, "item_id": item_id, "stage": body.stage}

    @router.post("/pipeline/items/{item_id}/archive", tags=["pipeline"])
    async def archive_pipeline_item(
        item_id: str,
        x_confirm_token: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        with _http_errors():
            changed = get_organizer().archive_pipeline_item(item_id, x_confirm_token)
        return {"archived": changed, "item_id": item_id}

    @router.post("/pipeline/items/{item_id}/unarchive", tags=["pipeline"])
    async def unarchive_pipeline_item(item_id: str) -> dict[str, Any]:
        with _http_errors():
            changed = get_organizer().unarchive_pipeline_item(item_id)
        return {"restored": changed, "item_id": item_id}

    @router.delete("/pipeline/items/{item_id}", tags=["pipeline"])
    async def delete_pipeline_item(item_id: str) -> dict[str, Any]:
        with _http_errors():
            item = get_organizer().delete_pipeline_item(item_id)
        return {"deleted": item.id}

    @router.post("/pipeline/stages", status_code=201, tags=["pipeline"])
    async def insert_stage(body: InsertStageRequest) -> dict[str, Any]:
        organizer = get_organizer()
        with _http_errors():
            stage = organizer.insert_stage_after(
                body.after, body.title, body.short_title or body.title, body.instructions
            )
        return {"stage": stage.to_dict(), "stage_count": organizer.pipeline.stage_count}

    @router.patch("/pipeline/stages/{stage_number}", tags=["pipeline"])
    async def update_stage(stage_number: int, body: UpdateStageRequest) -> dict[str, Any]:
        organizer = get_organizer()
        with _http_errors():
            stage = organizer.pipeline.get_stage(stage_number)
            if body.title is not None or body.short_title is not None:
                stage = organizer.rename_stage(
                    stage_number,
                    body.title if body.title is not None else stage.title,
                    body.short_title if body.short_title is not None else stage.short_title,
                )
            if body.instructions is not None:
                stage = organizer.update_stage_instructions(stage_number, body.instructions)
        return {"stage": stage.to_dict()}

    @router.delete("/pipeline/stages/{stage_number}", tags=["pipeline"])
    async def delete_stage(
        stage_number: int,
        x_confirm_token: Optional[str] = Header(None),
    ) -> dict[str, Any]:
        organizer = get_organizer()
        with _http_errors():
            relocated = organizer.delete_stage(stage_number, x_confirm_token)
        return {
            "deleted": stage_number,
            "relocated": relocated,
            "stage_count": organizer.pipeline.stage_count,
        }

    # ------------------------------------------------------------------
    # Drag session
    # ------------------------------------------------------------------

    @router.get("/drag", response_model=DragResponse, tags=["drag"])
    async def get_drag() -> DragResponse:
        return DragResponse(session=get_organizer().drag_state.to_dict())

    @router.post("/drag/pick-up", response_model=DragResponse, tags=["drag"])
    async def drag_pick_up(body: PickUpRequest) -> DragResponse:
        with _http_errors():
            session = get_organizer().pick_up(body.entity_id)
        return DragResponse(session=session.to_dict())

    @router.post("/drag/hover", response_model=DragResponse, tags=["drag"])
    async def drag_hover(body: HoverRequest) -> DragResponse:
        with _http_errors():
            session = get_organizer().hover(DropTarget(body.locator.to_locator(), body.index))
        return DragResponse(session=session.to_dict())

    @router.post("/drag/leave", response_model=DragResponse, tags=["drag"])
    async def drag_leave() -> DragResponse:
        return DragResponse(session=get_organizer().leave().to_dict())

    @router.post("/drag/drop", response_model=DragResponse, tags=["drag"])
    async def drag_drop() -> DragResponse:
        return DragResponse(session=get_organizer().drop().to_dict())

    @router.post("/drag/cancel", response_model=DragResponse, tags=["drag"])
    async def drag_cancel() -> DragResponse:
        return DragResponse(session=get_organizer().cancel().to_dict())

    # ------------------------------------------------------------------
    # Notices and persistence
    # ------------------------------------------------------------------

    @router.get("/notices", tags=["meta"])
    async def get_notices(drain: bool = Query(False)) -> dict[str, Any]:
        organizer = get_organizer()
        notices = organizer.drain_notices() if drain else organizer.notices()
        return {"notices": notices}

    @router.post("/flush", tags=["meta"])
    async def flush() -> dict[str, Any]:
        return {"saved": get_organizer().flush()}

    return router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
    organizer: Optional[Organizer] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        project_dir: Directory holding the `.organizer` state dir.
        enable_cors: Whether to enable CORS.
        organizer: Serve this organizer instead of opening one from disk.

    Returns:
        Configured FastAPI app.
    """
    served = organizer or Organizer.open(project_dir or Path.cwd())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if not served.close():
            logger.warning("Pending organizer changes could not be saved on shutdown")

    app = FastAPI(
        title="Workflow Organizer",
        description="Workspace tree and stage pipeline organizer",
        version="0.1.0",
        lifespan=lifespan,
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.organizer = served
    app.include_router(create_organizer_router(lambda: app.state.organizer))

    @app.get("/")
    async def root():
        return {"name": "Workflow Organizer", "version": "0.1.0", "status": "running"}

    return app
