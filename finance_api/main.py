import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .config import settings
from .core.errors import InvariantViolationError, ValidationError
from .database import init_db
from .routers import auth as auth_router
from .routers import budgets as budgets_router
from .routers import categories as categories_router
from .routers import goals as goals_router
from .routers import payments as payments_router
from .routers import wallets as wallets_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"errors": exc.as_dict()},
        )

    @app.exception_handler(InvariantViolationError)
    async def handle_invariant_violation(request: Request, exc: InvariantViolationError):
        logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Stored data is inconsistent"},
        )

    @app.exception_handler(IntegrityError)
    async def handle_integrity_error(request: Request, exc: IntegrityError):
        logger.warning("Constraint violated on %s %s: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": "Conflicting write, please retry"},
        )


def create_app() -> FastAPI:
    app = FastAPI(title="Finance Bookkeeping API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def on_startup():
        init_db()
        logger.info("Database ready (%s)", settings.environment)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    register_exception_handlers(app)

    app.include_router(auth_router.router)
    app.include_router(categories_router.router)
    app.include_router(budgets_router.router)
    app.include_router(wallets_router.router)
    app.include_router(payments_router.router)
    app.include_router(goals_router.router)

    return app


app = create_app()
