import re
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Literal
from urllib.parse import quote

import anyio
import requests
import structlog
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from menu_digitalizer.auth import (
    AuthUser,
    HostedAuthClient,
    get_auth_client,
    get_current_user,
    get_optional_user,
)
from menu_digitalizer.core.config import settings
from menu_digitalizer.core.errors import (
    AuthError,
    ExternalAPIError,
    ExtractionInProgressError,
    ImageReadError,
    ItemNotFoundError,
    MenuEditError,
    MenuParseError,
    PersistenceError,
)
from menu_digitalizer.core.logging import configure_logging, request_id_ctx
from menu_digitalizer.core.sentry import init_sentry
from menu_digitalizer.db.pool import close_pool, get_pool
from menu_digitalizer.extraction import ExtractionGuard, extract_menu
from menu_digitalizer.imaging.prepare import PreparedImage, prepare_image
from menu_digitalizer.llm.vision import models_url
from menu_digitalizer.menu.export import MEDIA_TYPES, ExportFormat, export_filename, render
from menu_digitalizer.menu.models import Menu
from menu_digitalizer.menu.store import MenuStore
from menu_digitalizer.sessions import (
    MenuSessionAdapter,
    MenuSessionRecord,
    create_session_adapter,
)

configure_logging(settings.log_level)
init_sentry()
logger = structlog.get_logger(__name__)

IMAGE_FILENAME_RE = re.compile(r"^[0-9a-f]{32}\.(jpg|png|webp|gif)$")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("service_started", session_backend=settings.session_backend)
    if not settings.anthropic_api_key:
        logger.warning("anthropic_api_key_missing")
    try:
        yield
    finally:
        if settings.session_backend == "postgres":
            close_pool()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
guard = ExtractionGuard()
sessions: MenuSessionAdapter | None = None


def get_sessions() -> MenuSessionAdapter:
    global sessions
    if sessions is None:
        sessions = create_session_adapter()
    return sessions


class AnalyzeMenuRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image: str | None = None
    media_type: str = Field(default="image/jpeg", alias="mediaType")


class SaveMenuRequest(BaseModel):
    menu: Menu
    restaurant_name: str | None = None
    image_url: str | None = None


class UpdateMenuRequest(BaseModel):
    menu: Menu | None = None
    restaurant_name: str | None = None


class EditItemRequest(BaseModel):
    field: str = Field(..., min_length=1)
    value: str


class CredentialsRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=6, max_length=256)


@app.middleware("http")
async def add_request_context(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request_id_token = request_id_ctx.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_ctx.reset(request_id_token)

    response.headers["x-request-id"] = request_id
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("request_validation_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


@app.exception_handler(ValidationError)
async def pydantic_validation_handler(request: Request, exc: ValidationError):
    logger.warning("pydantic_validation_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


@app.exception_handler(ExternalAPIError)
async def external_api_handler(request: Request, exc: ExternalAPIError):
    logger.warning(
        "external_api_failed",
        path=request.url.path,
        service=exc.service,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=503,
        content={"detail": f"Upstream {exc.service} error"},
    )


@app.exception_handler(ImageReadError)
async def image_read_handler(request: Request, exc: ImageReadError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(ExtractionInProgressError)
async def extraction_in_progress_handler(request: Request, exc: ExtractionInProgressError):
    logger.info("extraction_rejected_in_progress", path=request.url.path)
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(ItemNotFoundError)
async def item_not_found_handler(request: Request, exc: ItemNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(MenuEditError)
async def menu_edit_handler(request: Request, exc: MenuEditError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_handler(request: Request, exc: PersistenceError):
    logger.error("persistence_failed", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"detail": "Menu storage unavailable"})


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("rate_limit_exceeded", path=request.url.path)
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Please slow down."},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_exception", path=request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


def _analysis_failure(exc: Exception) -> JSONResponse:
    if isinstance(exc, MenuParseError):
        logger.error("menu_parse_failed", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to parse menu data", "details": exc.raw_text},
        )
    logger.error("menu_analysis_failed", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={"error": "Failed to analyze menu", "details": str(exc)},
    )


def _store_image(prepared: PreparedImage) -> str:
    directory = Path(settings.storage_dir)
    directory.mkdir(parents=True, exist_ok=True)
    filename = f"{uuid.uuid4().hex}.{prepared.extension}"
    (directory / filename).write_bytes(prepared.data)
    return f"/api/images/{filename}"


def _attachment(menu: Menu, fmt: ExportFormat) -> Response:
    filename = export_filename(menu, fmt)
    fallback = filename.encode("ascii", "replace").decode("ascii").replace("?", "_")
    disposition = f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"
    return Response(
        content=render(menu, fmt),
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": disposition},
    )


def _parse_item_ref(item_ref: str) -> int | str:
    return int(item_ref) if item_ref.isdigit() else item_ref


def _menu_payload(store: MenuStore) -> dict[str, Any]:
    return store.menu.model_dump(mode="json") if store.menu else {}


def _load_session(
    adapter: MenuSessionAdapter, user: AuthUser, session_id: str
) -> MenuSessionRecord:
    record = adapter.get(user.id, session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Menu session not found")
    return record


def _session_store(record: MenuSessionRecord) -> MenuStore:
    return MenuStore(record.menu_data, currency_symbol=settings.price_currency_symbol)


def _persist(
    adapter: MenuSessionAdapter, user: AuthUser, session_id: str, store: MenuStore
) -> MenuSessionRecord:
    menu = store.menu
    record = adapter.update(
        user.id,
        session_id,
        menu_data=_menu_payload(store),
        restaurant_name=menu.restaurant_name if menu else None,
    )
    if record is None:
        raise HTTPException(status_code=404, detail="Menu session not found")
    return record


@app.get("/health")
async def health() -> dict[str, str]:
    logger.info("health_check")
    return {"status": "ok"}


@app.get("/ready")
async def ready() -> JSONResponse:
    checks: dict[str, dict[str, str]] = {}
    status_code = 200

    def set_failure(name: str, error: Exception) -> None:
        nonlocal status_code
        checks[name] = {"status": "error", "error": str(error)}
        status_code = 503

    async def run_check(name: str, func) -> None:
        try:
            with anyio.fail_after(1.5):
                await anyio.to_thread.run_sync(func, abandon_on_cancel=True)
            checks[name] = {"status": "ok"}
        except TimeoutError:
            set_failure(name, TimeoutError(f"{name} check timed out"))
        except Exception as exc:  # noqa: BLE001 - narrow errors not needed for health
            set_failure(name, exc)

    def check_postgres() -> None:
        pool = get_pool()
        with pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()

    def check_anthropic() -> None:
        if not settings.anthropic_api_key:
            raise RuntimeError("anthropic_api_key missing")
        response = requests.get(
            models_url(),
            headers={
                "x-api-key": settings.anthropic_api_key,
                "anthropic-version": settings.vision_api_version,
            },
            timeout=1.5,
        )
        response.raise_for_status()

    if settings.session_backend == "postgres":
        await run_check("postgres", check_postgres)
    await run_check("anthropic", check_anthropic)

    overall = "ok" if status_code == 200 else "error"
    return JSONResponse(status_code=status_code, content={"status": overall, "checks": checks})


@app.post("/api/analyze-menu")
@limiter.limit(settings.analyze_rate_limit)
async def analyze_menu(request: Request, payload: AnalyzeMenuRequest) -> JSONResponse:
    if not payload.image:
        return JSONResponse(status_code=400, content={"error": "No image provided"})

    try:
        menu = await anyio.to_thread.run_sync(extract_menu, payload.image, payload.media_type)
    except (MenuParseError, ExternalAPIError, RuntimeError) as exc:
        return _analysis_failure(exc)

    return JSONResponse(content={"menu": menu})


@app.post("/api/menus/upload")
@limiter.limit(settings.analyze_rate_limit)
async def upload_menu(
    request: Request,
    file: UploadFile = File(...),
    user: AuthUser | None = Depends(get_optional_user),
) -> JSONResponse:
    """
    Prepare an uploaded photo, extract its menu and auto-save it for signed-in users.

    Only one extraction may be pending per user (or client address when
    anonymous); a concurrent upload is rejected with 409.
    """
    key = user.id if user else f"addr:{get_remote_address(request)}"
    with guard.hold(key):
        raw = await file.read()
        prepared = await anyio.to_thread.run_sync(prepare_image, raw)

        try:
            extracted = await anyio.to_thread.run_sync(
                extract_menu, prepared.to_base64(), prepared.media_type
            )
        except (MenuParseError, ExternalAPIError, RuntimeError) as exc:
            return _analysis_failure(exc)

        store = MenuStore(extracted, currency_symbol=settings.price_currency_symbol)
        image_url = _store_image(prepared)

        session_id = None
        if user is not None:
            try:
                record = await anyio.to_thread.run_sync(
                    get_sessions().save,
                    user.id,
                    _menu_payload(store),
                    store.menu.restaurant_name,
                    image_url,
                )
                session_id = record.id
            except PersistenceError as exc:
                logger.warning("menu_auto_save_failed", user_id=user.id, error=str(exc))

    return JSONResponse(
        content={
            "menu": _menu_payload(store),
            "session_id": session_id,
            "image_url": image_url,
        }
    )


@app.get("/api/images/{filename}")
async def get_image(filename: str) -> Response:
    if not IMAGE_FILENAME_RE.match(filename):
        raise HTTPException(status_code=404, detail="Image not found")
    path = Path(settings.storage_dir) / filename
    if not path.exists():
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(path)


@app.post("/api/export/{fmt}")
async def export_menu(fmt: ExportFormat, menu: Menu) -> Response:
    return _attachment(menu, fmt)


@app.post("/api/auth/signup")
def sign_up(
    payload: CredentialsRequest,
    client: HostedAuthClient = Depends(get_auth_client),
) -> dict[str, Any]:
    user = client.sign_up(payload.email, payload.password, settings.auth_redirect_url)
    logger.info("user_signed_up", user_id=user.id)
    return {
        "user": user.model_dump(),
        "message": "Check your email for the confirmation link!",
    }


@app.post("/api/auth/login")
def sign_in(
    payload: CredentialsRequest,
    client: HostedAuthClient = Depends(get_auth_client),
) -> dict[str, Any]:
    session = client.sign_in_with_password(payload.email, payload.password)
    logger.info("user_signed_in", user_id=session.user.id)
    return session.model_dump()


@app.get("/api/auth/oauth/{provider}")
def oauth_url(
    provider: Literal["google", "github", "apple", "azure"],
    client: HostedAuthClient = Depends(get_auth_client),
) -> dict[str, str]:
    return {"url": client.oauth_authorize_url(provider, settings.auth_redirect_url)}


@app.get("/api/menus")
def list_menus(
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> list[MenuSessionRecord]:
    return adapter.list(user.id)


@app.post("/api/menus", status_code=201)
def save_menu(
    payload: SaveMenuRequest,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> MenuSessionRecord:
    store = MenuStore(payload.menu, currency_symbol=settings.price_currency_symbol)
    restaurant_name = payload.restaurant_name or payload.menu.restaurant_name
    record = adapter.save(user.id, _menu_payload(store), restaurant_name, payload.image_url)
    logger.info("menu_session_saved", user_id=user.id, session_id=record.id)
    return record


@app.get("/api/menus/{session_id}")
def get_menu(
    session_id: str,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> MenuSessionRecord:
    return _load_session(adapter, user, session_id)


@app.patch("/api/menus/{session_id}")
def update_menu(
    session_id: str,
    payload: UpdateMenuRequest,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> MenuSessionRecord:
    store = _session_store(_load_session(adapter, user, session_id))
    if payload.menu is not None:
        store.load(payload.menu)
    if payload.restaurant_name is not None:
        store.rename(payload.restaurant_name)
    return _persist(adapter, user, session_id, store)


@app.delete("/api/menus/{session_id}", status_code=204)
def delete_menu(
    session_id: str,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> Response:
    if not adapter.delete(user.id, session_id):
        raise HTTPException(status_code=404, detail="Menu session not found")
    logger.info("menu_session_deleted", user_id=user.id, session_id=session_id)
    return Response(status_code=204)


@app.get("/api/menus/{session_id}/grouped")
def grouped_menu(
    session_id: str,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> dict[str, Any]:
    store = _session_store(_load_session(adapter, user, session_id))
    return {
        "restaurant_name": store.menu.restaurant_name,
        "categories": {
            category: [item.model_dump(mode="json") for item in items]
            for category, items in store.group_by_category().items()
        },
        "counts": store.category_counts(),
        "total": store.item_count,
    }


@app.patch("/api/menus/{session_id}/items/{item_ref}")
def edit_menu_item(
    session_id: str,
    item_ref: str,
    payload: EditItemRequest,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> MenuSessionRecord:
    store = _session_store(_load_session(adapter, user, session_id))
    store.set_field(_parse_item_ref(item_ref), payload.field, payload.value)
    return _persist(adapter, user, session_id, store)


@app.delete("/api/menus/{session_id}/items/{item_ref}")
def delete_menu_item(
    session_id: str,
    item_ref: str,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> MenuSessionRecord:
    store = _session_store(_load_session(adapter, user, session_id))
    store.delete_item(_parse_item_ref(item_ref))
    return _persist(adapter, user, session_id, store)


@app.get("/api/menus/{session_id}/export/{fmt}")
def export_saved_menu(
    session_id: str,
    fmt: ExportFormat,
    user: AuthUser = Depends(get_current_user),
    adapter: MenuSessionAdapter = Depends(get_sessions),
) -> Response:
    store = _session_store(_load_session(adapter, user, session_id))
    return _attachment(store.menu, fmt)
