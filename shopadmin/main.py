"""
FastAPI application factory.

Responsibilities
----------------
* Own the database engine: built once in the lifespan (or injected by tests)
  and disposed at shutdown.
* Mount the product and auth routes under /api.
* Render every response, including errors, as the JSON envelope
  ``{success, message?, data?, error?, ...}``.
* Serve stored uploads at /uploads when images are kept on disk.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from . import crud, schemas
from .auth import require_admin
from .config import Settings, get_settings, use_settings
from .db import get_db, init_db, make_engine, make_session_factory
from .errors import ApiError, ValidationError
from .images import UPLOAD_URL_PREFIX, ImageStore, ImageUpload
from .log import configure_logging, logger
from .utils import parse_pagination

IMAGE_FIELDS = ("images", "images[]")


# -------------------- Envelope helpers --------------------

def _product_out(product) -> dict:
    return schemas.ProductRead.from_model(product).model_dump(mode="json")


def _page_out(page: schemas.Page, **extra) -> dict:
    return {
        "success": True,
        "count": page.total,
        "data": [_product_out(p) for p in page.items],
        "page": page.page,
        "totalPages": page.total_pages,
        "hasNextPage": page.has_next_page,
        "hasPrevPage": page.has_prev_page,
        **extra,
    }


def _user_out(user) -> dict:
    return schemas.UserRead.model_validate(user).model_dump()


def _error_response(status_code: int, message: str, error=None) -> JSONResponse:
    body = {"success": False, "message": message}
    if error is not None:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


# -------------------- Request parsing --------------------

async def _read_product_request(request: Request, store: ImageStore) -> Tuple[dict, List[ImageUpload]]:
    """Split a product request into plain fields and image uploads.

    Multipart forms carry files under ``images`` or ``images[]``; a JSON body
    is accepted for field-only updates.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError as e:
            raise ValidationError("Invalid JSON body") from e
        if not isinstance(body, dict):
            raise ValidationError("Request body must be an object")
        return body, []

    form = await request.form()
    try:
        fields = {}
        files = []
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key not in IMAGE_FIELDS:
                    raise ValidationError("File upload error", error=f"Unexpected file field: {key}")
                files.append(value)
            else:
                fields[key] = value

        if len(files) > store.max_files:
            raise ValidationError("File upload error", error=f"Too many files (max {store.max_files})")

        uploads = []
        for f in files:
            # one byte over the limit is enough to reject it
            data = await f.read(store.max_bytes + 1)
            if not f.filename and not data:
                continue  # empty file input
            uploads.append(ImageUpload(filename=f.filename or "", content_type=f.content_type or "", data=data))
    finally:
        await form.close()
    return fields, uploads


def _pagination(request: Request) -> Tuple[int, int]:
    params = request.query_params
    return parse_pagination(params.get("page"), params.get("limit", params.get("pageSize")))


# -------------------- Routes --------------------

products = APIRouter(prefix="/api/products", tags=["products"])
auth_routes = APIRouter(prefix="/api/auth", tags=["auth"])


@products.get("")
def list_products(request: Request, db: Session = Depends(get_db)):
    page, limit = _pagination(request)
    return _page_out(crud.list_products(db, page, limit))


@products.get("/search/{query}")
def search_products(query: str, request: Request, db: Session = Depends(get_db)):
    page, limit = _pagination(request)
    return _page_out(crud.search_products(db, query, page, limit), searchQuery=query)


@products.get("/{product_id}")
def get_product(product_id: str, db: Session = Depends(get_db)):
    return {"success": True, "data": _product_out(crud.get_product(db, product_id))}


@products.post("", status_code=201)
async def create_product(request: Request, db: Session = Depends(get_db), _admin: dict = Depends(require_admin)):
    store: ImageStore = request.app.state.image_store
    fields, uploads = await _read_product_request(request, store)
    if not uploads:
        raise ValidationError("At least one image is required")
    data = schemas.validate(schemas.ProductCreate, fields)
    # file writes and the commit block, so they stay off the event loop
    product = await run_in_threadpool(crud.create_product, db, data, uploads, store)
    return {"success": True, "message": "Product created successfully", "data": _product_out(product)}


@products.put("/{product_id}")
async def update_product(
    product_id: str,
    request: Request,
    db: Session = Depends(get_db),
    _admin: dict = Depends(require_admin),
):
    store: ImageStore = request.app.state.image_store
    fields, uploads = await _read_product_request(request, store)
    # blank form inputs mean "leave unchanged"
    fields = {k: v for k, v in fields.items() if v is not None and v != ""}
    data = schemas.validate(schemas.ProductUpdate, fields)
    product = await run_in_threadpool(crud.update_product, db, product_id, data, uploads, store)
    return {"success": True, "message": "Product updated successfully", "data": _product_out(product)}


@products.delete("/{product_id}")
def delete_product(product_id: str, db: Session = Depends(get_db), _admin: dict = Depends(require_admin)):
    crud.soft_delete_product(db, product_id)
    return {"success": True, "message": "Product deleted successfully"}


@auth_routes.post("/register", status_code=201)
def register(payload: Optional[dict] = Body(default=None), db: Session = Depends(get_db)):
    data = schemas.validate(schemas.UserRegister, payload, missing_message="All fields are required")
    user, token = crud.register(db, data)
    return {"success": True, "message": "Registered successfully", "data": _user_out(user), "token": token}


@auth_routes.post("/login")
def login(payload: Optional[dict] = Body(default=None), db: Session = Depends(get_db)):
    data = schemas.validate(schemas.UserLogin, payload, missing_message="Email and password are required")
    user, token = crud.login(db, data)
    logger.info("login user id=%s", user.id)
    return {"success": True, "message": "Login successful", "data": _user_out(user), "token": token}


# -------------------- Request-logging middleware --------------------
# Only the URL and metadata are recorded, never bodies (passwords) or headers (tokens).


class _RequestLogMiddleware(BaseHTTPMiddleware):
    """Log method, path, client IP, response status and latency (ms)."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        client_ip = request.client.host if request.client else "unknown"
        logger.info(
            "%s %s | client=%s status=%d latency=%.1fms",
            request.method,
            request.url.path,
            client_ip,
            response.status_code,
            elapsed_ms,
        )
        return response


# -------------------- Application factory --------------------

def _attach_engine(app: FastAPI, engine: Engine) -> None:
    init_db(engine)
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)


def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. Pass ``engine`` to share an existing database (tests)."""
    if settings is None:
        settings = get_settings()
    else:
        # tokens are signed with the process settings, so they must match the app's
        use_settings(settings)
    configure_logging(settings.log_config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "session_factory", None) is None:
            owned = make_engine(settings.database_url)
            _attach_engine(app, owned)
        logger.info("Shop admin service starting up (images=%s)", settings.image_storage)
        try:
            yield
        finally:
            logger.info("Shop admin service shutting down")
            if owned is not None:
                owned.dispose()
                app.state.session_factory = None

    app = FastAPI(title="Shop Admin API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.session_factory = None
    app.state.image_store = ImageStore.from_settings(settings)
    if engine is not None:
        _attach_engine(app, engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )
    app.add_middleware(_RequestLogMiddleware)

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.error)
            # store internals are not echoed to clients
            return _error_response(exc.status_code, exc.message)
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
        return _error_response(exc.status_code, exc.message, exc.error)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(400, "Validation failed", errors)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error_response(404, "Route not found")
        return _error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, "Something went wrong!")

    @app.get("/")
    def root():
        return {"success": True, "message": "Shop admin API is running!"}

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(auth_routes)
    app.include_router(products)

    if settings.image_storage == "disk":
        os.makedirs(settings.upload_dir, exist_ok=True)
        app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=settings.upload_dir), name="uploads")

    return app


app = create_app()
