import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, load_settings
from database import (
    Database,
    bulk_update_spaces,
    create_document,
    delete_document,
    get_document,
    get_documents,
    serialize_doc,
    update_document,
)
from logger import setup_logger
from schemas import Health, Message, SpacesUpdate, SpacesUpdateResponse

logger = logging.getLogger("lessons_api")


class PrettyJSONResponse(JSONResponse):
    """JSON rendered with a 3-space indent"""

    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, allow_nan=False, indent=3).encode("utf-8")


class PublicFiles(StaticFiles):
    """StaticFiles that never exposes dotfiles, sources or connection settings"""

    hidden_suffixes = {".properties", ".py", ".pyc", ".env"}

    def lookup_path(self, path: str):
        parts = Path(path).parts
        if any(part.startswith(".") for part in parts) or Path(path).suffix in self.hidden_suffixes:
            return "", None
        return super().lookup_path(path)


def error_response(status_code: int, message: str) -> PrettyJSONResponse:
    return PrettyJSONResponse(status_code=status_code, content={"error": message})


def get_database(request: Request) -> Database:
    """Readiness gate: API routes answer 503 until the database is connected"""
    database = request.app.state.database
    if not database.ready:
        raise HTTPException(status_code=503, detail="Database not ready")
    return database


# ============================================================================
# LESSONS
# ============================================================================

lessons_router = APIRouter(tags=["lessons"])


@lessons_router.get("/lessons", response_model=List[Dict[str, Any]])
def list_lessons(database: Database = Depends(get_database)):
    try:
        lessons = get_documents(database.lessons())
    except Exception:
        logger.exception("Error fetching lessons")
        raise HTTPException(status_code=500, detail="Failed to fetch lessons")
    return [serialize_doc(doc) for doc in lessons]


@lessons_router.get("/lessons/{lesson_id}", response_model=Dict[str, Any])
def get_lesson(lesson_id: str, database: Database = Depends(get_database)):
    # A malformed id raises InvalidId here and is answered with 500, not 400
    try:
        lesson = get_document(database.lessons(), lesson_id)
    except Exception:
        logger.exception("Error fetching lesson by ID %s", lesson_id)
        raise HTTPException(status_code=500, detail="Failed to fetch lesson")

    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return serialize_doc(lesson)


@lessons_router.post("/lessons", status_code=201, response_model=Dict[str, Any])
def create_lesson(lesson: Dict[str, Any] = Body(...), database: Database = Depends(get_database)):
    try:
        created = create_document(database.lessons(), lesson)
    except Exception:
        logger.exception("Error adding lesson")
        raise HTTPException(status_code=500, detail="Failed to add lesson")
    return serialize_doc(created)


@lessons_router.put("/lessons/updateSpaces", response_model=SpacesUpdateResponse)
def update_spaces(updates: List[SpacesUpdate], database: Database = Depends(get_database)):
    """
    Set the seat count of many lessons in one bulk write.

    Not atomic: on a driver error midway, updates already applied stay applied.
    """
    try:
        result = bulk_update_spaces(database.lessons(), [update.model_dump() for update in updates])
    except Exception:
        logger.exception("Error updating spaces")
        raise HTTPException(status_code=500, detail="Failed to update spaces")
    return {"message": "Spaces updated successfully", "result": result}


@lessons_router.put("/lessons/{lesson_id}", response_model=Message)
def update_lesson(lesson_id: str, lesson: Dict[str, Any] = Body(...), database: Database = Depends(get_database)):
    # Unknown ids are reported as updated, same as delete
    try:
        update_document(database.lessons(), lesson_id, lesson)
    except Exception:
        logger.exception("Error updating lesson %s", lesson_id)
        raise HTTPException(status_code=500, detail="Failed to update lesson")
    return {"message": "Lesson updated successfully"}


@lessons_router.delete("/lessons/{lesson_id}", response_model=Message)
def delete_lesson(lesson_id: str, database: Database = Depends(get_database)):
    try:
        delete_document(database.lessons(), lesson_id)
    except Exception:
        logger.exception("Error deleting lesson %s", lesson_id)
        raise HTTPException(status_code=500, detail="Failed to delete lesson")
    return {"message": "Lesson deleted successfully"}


# ============================================================================
# ORDERS
# ============================================================================

orders_router = APIRouter(tags=["orders"])


@orders_router.post("/order_placed", status_code=201, response_model=Message)
def place_order(order: Dict[str, Any] = Body(...), database: Database = Depends(get_database)):
    try:
        create_document(database.orders(), order)
    except Exception:
        logger.exception("Error placing order")
        raise HTTPException(status_code=500, detail="Failed to place order")
    return {"message": "Order placed successfully"}


@orders_router.get("/order_placed", response_model=List[Dict[str, Any]])
def list_orders(database: Database = Depends(get_database)):
    try:
        orders = get_documents(database.orders())
    except Exception:
        logger.exception("Error fetching orders")
        raise HTTPException(status_code=500, detail="Failed to fetch orders")
    return [serialize_doc(doc) for doc in orders]


# ============================================================================
# LANDING PAGE, IMAGES, HEALTH
# ============================================================================

site_router = APIRouter()


@site_router.get("/", include_in_schema=False)
def landing_page(request: Request):
    index = request.app.state.settings.assets_dir / "index.html"
    if not index.is_file():
        raise HTTPException(status_code=404, detail="Not Found")
    return FileResponse(index)


@site_router.get("/images/{image_path:path}", include_in_schema=False)
def get_image(image_path: str, request: Request):
    images_dir = (request.app.state.settings.assets_dir / "images").resolve()
    try:
        image = (images_dir / image_path).resolve()
        found = images_dir in image.parents and image.is_file()
    except (ValueError, OSError):
        found = False

    if not found:
        logger.warning("Image not found: %r", image_path)
        raise HTTPException(status_code=404, detail="Image not found")
    return FileResponse(image)


@site_router.get("/health", response_model=Health)
def health(request: Request):
    """Process liveness and database readiness, never gated"""
    database = request.app.state.database
    return {"status": "ok", "database": "connected" if database.ready else "unavailable"}


# ============================================================================
# APPLICATION
# ============================================================================

@asynccontextmanager
async def lifespan(application: FastAPI):
    database = application.state.database
    # Connect in the background so the server listens at once; API routes
    # answer 503 until it succeeds, and a failure is logged by the connector
    connect_task = asyncio.create_task(run_in_threadpool(database.connect))
    application.state.connect_task = connect_task
    logger.info("Server is running on port %s", application.state.settings.port)

    yield

    # Bounded by the server selection timeout
    await connect_task
    await run_in_threadpool(database.close)


def create_application(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Server and connection settings, loaded from the
            environment and dbconnection.properties when omitted
        database: Database connector, built from settings when omitted.
            Connected in the lifespan startup, closed at shutdown.
    """
    settings = settings or load_settings()
    setup_logger(settings.log_level)

    application = FastAPI(
        title="Lessons Storefront API",
        version="1.0.0",
        default_response_class=PrettyJSONResponse,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.database = database or Database(settings.database)

    @application.middleware("http")
    async def log_requests(request: Request, call_next):
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"
        logger.info("%s %s", request.method, url)
        return await call_next(request)

    # Added last so it wraps the request logger
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        response = error_response(exc.status_code, str(exc.detail))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @application.exception_handler(RequestValidationError)
    async def invalid_body_handler(request: Request, exc: RequestValidationError):
        logger.warning("Invalid request body for %s %s: %s", request.method, request.url.path, exc.errors())
        return error_response(400, "Invalid request body")

    @application.exception_handler(Exception)
    async def global_error_handler(request: Request, exc: Exception):
        logger.error("Global error handler: %r", exc, exc_info=exc)
        response = error_response(500, "An error occurred")
        # Built outside CORSMiddleware, so the header is set here
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    application.include_router(lessons_router)
    application.include_router(orders_router)
    application.include_router(site_router)

    # Everything else falls through to plain file serving, registered last
    if settings.assets_dir.is_dir():
        application.mount("/", PublicFiles(directory=settings.assets_dir), name="static")

    return application


app = create_application()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
