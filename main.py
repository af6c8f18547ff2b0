import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

import uvicorn
import yaml
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pygments.formatters import HtmlFormatter

from blog.cache import PostCache, Snapshot
from blog.query import DEFAULT_LIMIT, MAX_LIMIT, filter_by_tag, paginate, search, tag_counts
from blog.ratelimit import RateLimiter
from blog.runtime import ContentRuntime
from blog.scanner import INDEX_FILE
from blog.schemas import (
    PostDetail,
    PostList,
    SearchResults,
    TagCount,
    TaggedPostList,
    TagList,
)
from blog.version import __app_name__, __version__
from blog.watcher import ChangeDetector

BASE_DIR = Path(__file__).parent

logger = logging.getLogger("blog.server")

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
        "font-src 'self' https://fonts.gstatic.com",
        "script-src 'self'",
        "img-src 'self' data: https:",
        "connect-src 'self'",
    ]
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    # Startup
    settings = load_settings()
    posts_dir = resolve_posts_dir(settings)
    content_settings = settings.get("content", {})
    runtime = ContentRuntime(
        max_workers=settings.get("runtime", {}).get("thread_pool_workers", 2)
    )
    cache = PostCache(
        root=posts_dir,
        excerpt_length=content_settings.get("excerpt_length", 200),
        words_per_minute=content_settings.get("words_per_minute", 200),
    )

    watch_settings = settings.get("watch", {})
    detector = ChangeDetector(
        root=posts_dir,
        cache=cache,
        runtime=runtime,
        poll_interval=watch_settings.get("poll_interval_ms", 2000) / 1000,
        poll_throttle=watch_settings.get("poll_throttle_ms", 1500) / 1000,
        watch_events=watch_settings.get("events", True),
    )

    rate_settings = settings.get("rate_limit", {})
    rate_limiter = None
    if rate_settings.get("enabled", True):
        rate_limiter = RateLimiter(
            requests=rate_settings.get("requests", 100),
            window_seconds=rate_settings.get("window_seconds", 900),
        )

    # Build the first snapshot (also seeds a missing content root) before watching
    await runtime.read_snapshot(cache)
    await detector.start()

    # Store in app.state for access in handlers/APIs
    app.state.settings = settings
    app.state.posts_dir = posts_dir
    app.state.runtime = runtime
    app.state.cache = cache
    app.state.detector = detector
    app.state.rate_limiter = rate_limiter
    app.state.started_at = time.monotonic()
    logger.info("Serving posts from %s", posts_dir)

    yield

    # Shutdown
    await detector.stop()
    runtime.shutdown()


app = FastAPI(title="Markdown Blog", lifespan=lifespan)
app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
templates = Jinja2Templates(directory=BASE_DIR / "templates")

# Middleware registered later wraps everything registered before it:
# CORS -> security headers -> rate limit -> gzip -> routes
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    """Per-client token bucket on API paths; 429 with Retry-After when empty."""
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is not None and request.url.path.startswith("/api/"):
        client = request.client.host if request.client else "unknown"
        retry_after = limiter.check(client)
        if retry_after is not None:
            logger.warning("Rate limit exceeded for %s", client)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests, please try again later."},
                headers={"Retry-After": str(retry_after)},
            )
    return await call_next(request)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Content-Security-Policy", CONTENT_SECURITY_POLICY)
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    """Generic 500 without leaking internals."""
    logger.error(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


async def current_snapshot(request: Request) -> Snapshot:
    """Read the cache through the runtime (rebuilds run off the event loop)."""
    state = request.app.state
    return await state.runtime.read_snapshot(state.cache)


def page_posts(request: Request, posts, page: int, limit: int | None):
    pagination = request.app.state.settings.get("pagination", {})
    default_limit = pagination.get("default_limit", DEFAULT_LIMIT)
    return paginate(
        posts,
        page,
        default_limit if limit is None else limit,
        default_limit=default_limit,
        max_limit=pagination.get("max_limit", MAX_LIMIT),
    )


@app.get("/api/version")
async def get_version():
    return {"name": __app_name__, "version": __version__}


@app.get("/api/health")
async def get_health(request: Request):
    """Liveness plus cache and watcher state for diagnosis."""
    state = request.app.state
    mode = state.detector.mode
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - state.started_at, 3),
        "cache": state.cache.stats(),
        "watchMode": mode.value if mode else None,
    }


@app.get("/api/posts", response_model=PostList)
async def list_posts(request: Request, page: int = 1, limit: int | None = None):
    """Paginated posts, newest first, without rendered content."""
    snapshot = await current_snapshot(request)
    return PostList.from_page(page_posts(request, snapshot.posts, page, limit))


@app.get("/api/posts/tag/{tag}", response_model=TaggedPostList)
async def list_posts_by_tag(
    request: Request, tag: str, page: int = 1, limit: int | None = None
):
    """Paginated posts carrying ``tag`` (case-insensitive)."""
    snapshot = await current_snapshot(request)
    matching = filter_by_tag(snapshot.posts, tag)
    return TaggedPostList.from_page(page_posts(request, matching, page, limit), tag=tag)


@app.get("/api/posts/{post_id}/assets/{asset_path:path}")
async def get_post_asset(request: Request, post_id: str, asset_path: str):
    """
    Serve a file from a folder post's own directory.

    Raises:
        HTTPException: 403 if the path escapes the post directory,
            404 if ``post_id`` is not a folder post or the file does not exist
    """
    root = request.app.state.posts_dir.resolve()
    post_dir = (root / post_id).resolve()
    target = (post_dir / asset_path).resolve()
    if (
        post_dir == root
        or not post_dir.is_relative_to(root)
        or not target.is_relative_to(post_dir)
    ):
        logger.warning("Rejected asset path %s/%s", post_id, asset_path)
        raise HTTPException(status_code=403, detail="Access denied")
    # same rules as the scanner: hidden entries and folders without index.md are not posts
    hidden = any(part.startswith(".") for part in target.relative_to(root).parts)
    if hidden or not (post_dir / INDEX_FILE).is_file() or not target.is_file():
        raise HTTPException(status_code=404, detail="Asset not found")
    return FileResponse(target)


@app.get("/api/posts/{post_id}", response_model=PostDetail)
async def get_post(request: Request, post_id: str):
    """Single post including rendered content."""
    snapshot = await current_snapshot(request)
    post = snapshot.by_id.get(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return PostDetail.from_post(post)


@app.get("/api/search", response_model=SearchResults)
async def search_posts(
    request: Request, q: str | None = None, page: int = 1, limit: int | None = None
):
    """
    Substring search over title, content, excerpt, author and tags.

    Raises:
        HTTPException: 400 if ``q`` is missing or blank
    """
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    snapshot = await current_snapshot(request)
    results = search(snapshot.posts, q)
    return SearchResults.from_page(
        page_posts(request, results, page, limit),
        query=q,
        results_count=len(results),
    )


@app.get("/api/tags", response_model=TagList)
async def list_tags(request: Request):
    """All tags with post counts, most used first."""
    snapshot = await current_snapshot(request)
    return TagList(
        tags=[TagCount(tag=tag, count=count) for tag, count in tag_counts(snapshot.posts)]
    )


@app.get("/api/highlight.css")
async def get_highlight_css(request: Request):
    """Pygments stylesheet for highlighted code blocks."""
    style = request.app.state.settings.get("content", {}).get("highlight_style", "default")
    css = HtmlFormatter(style=style).get_style_defs(".highlight")
    return Response(content=css, media_type="text/css")


@app.get("/{full_path:path}", response_class=HTMLResponse)
async def index(request: Request, full_path: str):
    """Render the frontend for any non-API path."""
    if full_path.startswith("api/"):
        raise HTTPException(status_code=404, detail="Not found")

    # base_path from X-Forwarded-Prefix when mounted behind a reverse proxy
    base_path = request.headers.get("X-Forwarded-Prefix", "")

    return templates.TemplateResponse(
        request, "index.html", {"base_path": base_path, "version": __version__}
    )


def load_settings(path: Path | None = None) -> dict:
    """Load settings from config/settings.yaml (or $BLOG_SETTINGS), then env overrides."""
    settings_path = path or Path(
        os.environ.get("BLOG_SETTINGS", BASE_DIR / "config" / "settings.yaml")
    )
    with open(settings_path) as f:
        settings = yaml.safe_load(f) or {}
    return apply_env_overrides(settings)


def apply_env_overrides(settings: dict) -> dict:
    """Environment variables win over the settings file."""
    server = settings.setdefault("server", {})
    content = settings.setdefault("content", {})
    watch = settings.setdefault("watch", {})
    if "HOST" in os.environ:
        server["host"] = os.environ["HOST"]
    if "PORT" in os.environ:
        server["port"] = int(os.environ["PORT"])
    if "BLOG_POSTS_DIR" in os.environ:
        content["posts_dir"] = os.environ["BLOG_POSTS_DIR"]
    if "BLOG_WATCH_EVENTS" in os.environ:
        watch["events"] = os.environ["BLOG_WATCH_EVENTS"].lower() not in ("0", "false", "no")
    return settings


def resolve_posts_dir(settings: dict) -> Path:
    """Relative posts_dir values are resolved against the project root."""
    posts_dir = Path(settings.get("content", {}).get("posts_dir", "content/posts"))
    if not posts_dir.is_absolute():
        posts_dir = BASE_DIR / posts_dir
    return posts_dir


if __name__ == "__main__":
    settings = load_settings()
    logging.basicConfig(
        level=settings.get("logging", {}).get("level", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        app,
        host=settings["server"].get("host", "0.0.0.0"),
        port=settings["server"].get("port", 3000),
    )
