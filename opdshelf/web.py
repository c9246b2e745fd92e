from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlsplit

from fastapi import APIRouter, FastAPI, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from .archive import inspect, is_supported_archive
from .auth import (
    BASIC_REALM,
    SESSION_COOKIE,
    SESSION_MAX_AGE,
    check_basic_auth,
    is_authenticated,
    sign_in,
    sign_out,
    verify_credentials,
)
from .config import Settings, load_settings
from .db import init_db
from .library import (
    BookPathError,
    delete_book as delete_book_file,
    format_size,
    guess_mime_type,
    list_books,
    normalize_sort,
    rename_book,
    resolve_book_path,
    save_upload,
    simple_mime,
    sort_books,
    title_from_filename,
)
from .models import BookMetadata, CoverResult, InspectMode, SortMode, metadata_to_dict

BASE_DIR = Path(__file__).resolve().parent.parent
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"
OPDS_MEDIA_TYPE = "application/atom+xml;charset=utf-8;profile=opds-catalog;kind=acquisition"
ADMIN_TITLE = "OPDShelf Admin"
COVER_MAX_AGE = 86400

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["format_size"] = format_size
templates.env.filters["simple_mime"] = simple_mime
templates.env.filters["urlpath"] = lambda value: quote(str(value), safe="/")

router = APIRouter()
logger = logging.getLogger("opdshelf.web")


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def _proxy_base_url(settings: Settings) -> str:
    base = settings.reverse_proxy_host.rstrip("/")
    port = settings.reverse_proxy_port.strip()
    if not port or not base:
        return base
    parts = urlsplit(base if "//" in base else f"//{base}")
    if parts.port is not None:
        return base
    return f"{base}:{port}"


def base_url(request: Request, settings: Settings) -> str:
    if settings.reverse_proxy:
        return _proxy_base_url(settings)
    proto = request.headers.get("x-forwarded-proto") or "http"
    host = request.headers.get("host") or "localhost"
    return f"{proto}://{host}"


def cover_cache_headers() -> dict[str, str]:
    return {"Cache-Control": f"public, max-age={COVER_MAX_AGE}"}


def _book_file(settings: Settings, filename: str) -> Path:
    try:
        path = resolve_book_path(settings.books_dir, filename)
    except BookPathError:
        raise HTTPException(status_code=404, detail="Not Found")
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not Found")
    return path


def _admin_redirect() -> RedirectResponse:
    return RedirectResponse(url="/admin", status_code=303)


def _catalog(settings: Settings, sort: str) -> tuple[SortMode, list]:
    sort_mode = normalize_sort(sort)
    return sort_mode, sort_books(list_books(settings.books_dir), sort_mode)


async def auth_middleware(request: Request, call_next):
    settings = _settings(request)
    path = request.url.path
    if not settings.auth_enabled or path.startswith("/user/") or path.startswith("/static/"):
        return await call_next(request)
    if is_authenticated(settings, request.cookies.get(SESSION_COOKIE)):
        return await call_next(request)
    if check_basic_auth(settings, request.headers.get("Authorization")):
        return await call_next(request)

    if "text/html" in request.headers.get("Accept", ""):
        return RedirectResponse(url="/user/login", status_code=303)
    return PlainTextResponse("Unauthorized", status_code=401, headers={"WWW-Authenticate": BASIC_REALM})


@router.get("/")
async def opds_feed(request: Request, sort: str = SortMode.DATE_DESC.value) -> Response:
    settings = _settings(request)
    sort_mode, books = _catalog(settings, sort)
    return templates.TemplateResponse(
        request,
        "opds.xml",
        {
            "books": books,
            "base_url": base_url(request, settings),
            "current_time": _now_iso(),
            "sort_mode": sort_mode.value,
            "sort_modes": [mode.value for mode in SortMode],
            "is_archive": is_supported_archive,
        },
        media_type=OPDS_MEDIA_TYPE,
    )


@router.get("/admin", response_class=HTMLResponse)
async def admin(request: Request, sort: str = SortMode.DATE_DESC.value) -> HTMLResponse:
    settings = _settings(request)
    sort_mode, books = _catalog(settings, sort)
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "books": books,
            "base_url": base_url(request, settings),
            "sort_mode": sort_mode.value,
            "title": ADMIN_TITLE,
            "auth_enabled": settings.auth_enabled,
            "is_archive": is_supported_archive,
        },
    )


@router.post("/upload")
async def upload(request: Request, book: Optional[UploadFile] = File(None)) -> Response:
    settings = _settings(request)
    if book is None:
        return _admin_redirect()
    if not book.filename:
        return PlainTextResponse("No filename", status_code=400)

    data = await book.read()
    try:
        target = save_upload(settings.books_dir, book.filename, data)
    except BookPathError:
        return PlainTextResponse("Invalid filename", status_code=400)
    except OSError:
        logger.exception("upload of %s failed", book.filename)
        return PlainTextResponse("Upload failed", status_code=500)
    logger.info("uploaded %s (%d bytes)", target.name, len(data))
    return _admin_redirect()


@router.post("/delete/{filename:path}")
async def delete_book(request: Request, filename: str) -> RedirectResponse:
    settings = _settings(request)
    try:
        if delete_book_file(settings.books_dir, filename):
            logger.info("deleted %s", filename)
    except BookPathError:
        raise HTTPException(status_code=404, detail="Not Found")
    except OSError:
        logger.exception("delete of %s failed", filename)
    return _admin_redirect()


@router.post("/rename")
async def rename(
    request: Request,
    old_filename: str = Form("", alias="oldFilename"),
    new_filename: str = Form("", alias="newFilename"),
) -> RedirectResponse:
    settings = _settings(request)
    if not old_filename or not new_filename:
        return _admin_redirect()
    try:
        renamed = rename_book(settings.books_dir, old_filename, new_filename)
    except BookPathError:
        logger.warning("rejected rename %r -> %r", old_filename, new_filename)
        return _admin_redirect()
    except OSError:
        logger.exception("rename of %s failed", old_filename)
        return _admin_redirect()
    if renamed is not None:
        logger.info("renamed %s -> %s", old_filename, renamed.name)
    return _admin_redirect()


@router.get("/book/cover/{filename:path}")
@router.get("/cover/{filename:path}")
async def cover(request: Request, filename: str) -> Response:
    path = _book_file(_settings(request), filename)
    result = await run_in_threadpool(inspect, path, InspectMode.COVER)
    if not isinstance(result, CoverResult):
        raise HTTPException(status_code=404, detail="Cover not found")
    return Response(content=result.data, media_type=result.media_type, headers=cover_cache_headers())


@router.get("/book/info/{filename:path}", response_class=HTMLResponse)
@router.get("/info/{filename:path}", response_class=HTMLResponse)
async def book_info(request: Request, filename: str) -> HTMLResponse:
    path = _book_file(_settings(request), filename)
    result = await run_in_threadpool(inspect, path, InspectMode.INFO)
    metadata = result if isinstance(result, BookMetadata) else None
    title = (metadata.title if metadata else None) or title_from_filename(filename)
    return templates.TemplateResponse(
        request,
        "book_details.html",
        {
            "book": metadata_to_dict(metadata) if metadata else {"title": title},
            "has_cover": bool(metadata and metadata.cover is not None),
            "filename": filename,
            "title": title,
            "auth_enabled": _settings(request).auth_enabled,
        },
    )


@router.get("/book/{filename:path}")
async def download(request: Request, filename: str) -> FileResponse:
    path = _book_file(_settings(request), filename)
    return FileResponse(path, media_type=guess_mime_type(path.name), filename=path.name)


@router.get("/user/login", response_class=HTMLResponse)
async def login(request: Request) -> Response:
    settings = _settings(request)
    if (
        not settings.auth_enabled
        or is_authenticated(settings, request.cookies.get(SESSION_COOKIE))
        or check_basic_auth(settings, request.headers.get("Authorization"))
    ):
        return _admin_redirect()
    return templates.TemplateResponse(
        request,
        "login.html",
        {"title": "Login - OPDShelf", "error": request.query_params.get("error")},
    )


@router.post("/user/login")
async def login_post(request: Request, username: str = Form(""), password: str = Form("")) -> RedirectResponse:
    settings = _settings(request)
    if not verify_credentials(settings, username, password):
        logger.warning("failed login for user %r", username)
        return RedirectResponse(url="/user/login?error=1", status_code=303)
    session_id = sign_in(settings, username)
    response = _admin_redirect()
    response.set_cookie(SESSION_COOKIE, session_id, max_age=SESSION_MAX_AGE, httponly=True, samesite="lax")
    return response


@router.post("/user/logout")
async def logout(request: Request) -> RedirectResponse:
    settings = _settings(request)
    sign_out(settings, request.cookies.get(SESSION_COOKIE))
    response = RedirectResponse(url="/user/login", status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    return response


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    if settings is None:
        settings = load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(settings.db_path)
        print(f"[opdshelf] serving {settings.books_dir} (admin credentials configured: {settings.auth_enabled})")
        yield

    app = FastAPI(title="OPDShelf", lifespan=lifespan)
    app.state.settings = settings
    app.middleware("http")(auth_middleware)
    app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
    app.include_router(router)
    return app
