import os

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from .config import settings
from .db import Base, engine, SessionLocal
from .errors import AppError
from .models.models import utcnow
from .logging import setup_logging, RequestIdMiddleware
from .rate_limit import limiter
from .auth.router import router as auth_router
from .routes.tasks import router as tasks_router
from .routes.files import router as files_router
from .routes.projects import router as projects_router
from .routes.events import router as events_router
from .routes.search import router as search_router
from .routes.notifications import router as notifications_router
from .routes.users import router as users_router
from .routes.admin import router as admin_router
from .routes.tenants import router as tenants_router
from .services.users import ensure_bootstrap_admin


logger = structlog.get_logger(__name__)


def _validation_errors(exc: RequestValidationError) -> list:
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or None, "message": err.get("msg", "Invalid value")})
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("app_error", path=request.url.path, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content={"message": message}, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"message": "Validation error", "errors": _validation_errors(exc)})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        body = {"message": "Internal server error"}
        if settings.is_development:
            body["error"] = str(exc)
        return JSONResponse(status_code=500, content=body)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    register_exception_handlers(app)

    # Routers
    app.include_router(auth_router)
    app.include_router(tasks_router)
    app.include_router(files_router)
    app.include_router(projects_router)
    app.include_router(events_router)
    app.include_router(search_router)
    app.include_router(notifications_router)
    app.include_router(users_router)
    app.include_router(admin_router)
    app.include_router(tenants_router)

    # Uploaded attachments are public by URL
    os.makedirs(settings.upload_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        return {
            "status": "OK",
            "service": settings.app_name,
            "environment": settings.environment,
            "timestamp": utcnow().isoformat(),
        }

    @app.on_event("startup")
    def _startup():
        logger.info("startup", environment=settings.environment)
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            admin = ensure_bootstrap_admin(db, settings.admin_email, settings.admin_password, settings.admin_name)
            if admin is not None:
                db.commit()
                logger.info("bootstrap_admin_created", email=admin.email)
        finally:
            db.close()

    return app


app = create_app()
