from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from finance_tracker import categories
from finance_tracker.categories import Actor
from finance_tracker.config import load_config, parse_run_at
from finance_tracker.core.clock import Clock, utc_now
from finance_tracker.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    RunInProgressError,
    ValidationError,
)
from finance_tracker.core.models import CategoryType
from finance_tracker.database import Store
from finance_tracker.processor import RecurringProcessor
from finance_tracker.scheduler import RecurringScheduler


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: str = Header("user"),
) -> Actor:
    # Identity headers are set by the authentication layer in front of this app.
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return Actor(id=x_user_id, role=x_user_role)


def _error(status: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"success": False, "error": message, **extra}, status_code=status)


def create_app(
    config: Optional[Dict[str, object]] = None,
    store: Optional[Store] = None,
    clock: Clock = utc_now,
    start_scheduler: bool = False,
) -> FastAPI:
    config = config or load_config()
    store = store or Store(config["db_path"])
    store.init_schema()
    if config.get("seed_default_categories"):
        categories.seed_default_categories(store, clock)

    scheduler = RecurringScheduler(
        RecurringProcessor(store, clock),
        run_at=parse_run_at(config["scheduler"]["run_at"]),
        clock=clock,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            scheduler.stop(timeout=5)

    app = FastAPI(title="fintrack API", lifespan=lifespan)
    app.state.store = store
    app.state.scheduler = scheduler

    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return _error(400, exc.message, field=exc.field)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError):
        return _error(404, "Category not found")

    @app.exception_handler(PermissionDeniedError)
    async def permission_denied(request: Request, exc: PermissionDeniedError):
        return _error(403, str(exc))

    @app.exception_handler(PersistenceError)
    async def persistence_error(request: Request, exc: PersistenceError):
        return _error(500, "Storage error")

    @app.post("/api/categories", status_code=201)
    def create_category(data: Dict[str, Any] = Body(...), actor: Actor = Depends(get_actor)):
        category = categories.create_category(store, data, actor, clock)
        return {"success": True, "data": category.to_dict()}

    @app.get("/api/categories")
    def list_categories(
        show_default: Optional[bool] = Query(None, alias="showDefault"),
        type: Optional[CategoryType] = Query(None),
        actor: Actor = Depends(get_actor),
    ):
        found = categories.list_categories(store, actor, show_default=show_default, type=type)
        return [c.to_dict() for c in found]

    @app.get("/api/categories/recurring")
    def list_recurring_categories(
        type: Optional[CategoryType] = Query(None),
        is_active: Optional[bool] = Query(None, alias="isActive"),
        actor: Actor = Depends(get_actor),
    ):
        found = categories.list_recurring_categories(store, actor, type=type, is_active=is_active)
        return {"success": True, "data": [c.to_dict() for c in found]}

    @app.get("/api/categories/{category_id}")
    def get_category(category_id: str, actor: Actor = Depends(get_actor)):
        return categories.get_category(store, category_id, actor).to_dict()

    @app.api_route("/api/categories/{category_id}", methods=["PUT", "PATCH"])
    def update_category(
        category_id: str,
        data: Dict[str, Any] = Body(...),
        actor: Actor = Depends(get_actor),
    ):
        category = categories.update_category(store, category_id, data, actor, clock)
        return {"success": True, "data": category.to_dict()}

    @app.delete("/api/categories/{category_id}")
    def delete_category(category_id: str, actor: Actor = Depends(get_actor)):
        categories.delete_category(store, category_id, actor)
        return {"message": "Category deleted successfully"}

    @app.get("/api/transactions")
    def list_transactions(
        category: Optional[str] = Query(None),
        actor: Actor = Depends(get_actor),
    ):
        found = store.fetch_transactions(user=actor.id, category=category)
        return [t.to_dict() for t in found]

    @app.post("/api/recurring/run")
    def run_recurring(actor: Actor = Depends(get_actor)):
        if not actor.is_admin:
            return _error(403, "Admin access required")
        try:
            result = scheduler.run_now()
        except RunInProgressError as exc:
            return _error(409, str(exc))
        return {"success": result.status != "failure", "data": asdict(result)}

    @app.get("/api/recurring/status")
    def recurring_status(actor: Actor = Depends(get_actor)):
        return scheduler.status_payload()

    return app
