import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskcollab.auth.tokens import TokenCodec
from taskcollab.core.config import Settings, require_jwt_secrets, settings as default_settings
from taskcollab.core.errors import ApiError, error_label, render_error
from taskcollab.core.security import PasswordHasher
from taskcollab.routes.auth import router as auth_router
from taskcollab.routes.realtime import router as realtime_router
from taskcollab.services.realtime import RealtimeHub

logger = logging.getLogger(__name__)


def api_error_handler(request: Request, exc: ApiError):  # noqa: ARG001
    return render_error(exc)


def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message = detail if isinstance(detail, str) and detail else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": error_label(exc.status_code), "message": message},
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


def create_app(
    settings: Settings | None = None,
    *,
    token_codec: TokenCodec | None = None,
    password_hasher: PasswordHasher | None = None,
) -> FastAPI:
    """
    Build the API. Process-wide collaborators (token codec, password hasher,
    realtime hub) are constructed here and stored on ``app.state``; tests pass
    their own to control secrets, clocks and hashing cost.
    """
    settings = settings or default_settings
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))

    if token_codec is None:
        require_jwt_secrets()
        token_codec = TokenCodec.from_settings(settings)

    app = FastAPI(title="Task Collaboration API")
    app.state.settings = settings
    app.state.token_codec = token_codec
    app.state.password_hasher = password_hasher or PasswordHasher(rounds=settings.PASSWORD_HASH_ROUNDS)
    app.state.realtime_hub = RealtimeHub()

    logger.info(
        "Startup config: ENV=%s access_ttl=%s refresh_ttl=%s",
        settings.ENV,
        settings.JWT_ACCESS_EXPIRY,
        settings.JWT_REFRESH_EXPIRY,
    )

    @app.exception_handler(Exception)
    def unhandled_exception_handler(request: Request, exc: Exception):
        if settings.is_prod:
            logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        else:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
        )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(realtime_router)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    return app
