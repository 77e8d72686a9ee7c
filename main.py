import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles

from auth import AuthService, get_auth_service, get_current_user
from database import DocumentStore, create_store, ensure_indexes
from errors import CivicLensError, PersistenceError, to_http_exception
from reports import ReportService
from schemas import (
    AuthResponse,
    CreateReportResponse,
    HealthResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    ReportForm,
    ReportOut,
    User,
    UserOut,
)
from security import PasswordHasher, TokenManager
from settings import Settings, get_settings
from uploads import UPLOADS_ROUTE, UploadStorage

logger = logging.getLogger(__name__)


def validate_config(settings: Settings):
    """Validate critical configuration settings on startup."""
    if settings.uses_default_secret:
        if settings.is_production:
            raise RuntimeError(
                "SECURITY ERROR: JWT_SECRET must be changed from the default in production!"
            )
        logger.warning("JWT_SECRET is not set, using the insecure development default")

    logger.info(f"Config validation passed. Production mode: {settings.is_production}")


# ---------- Dependencies ----------

def get_report_service(request: Request) -> ReportService:
    return request.app.state.report_service


def get_report_form(
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    latitude: Optional[str] = Form(None),
    longitude: Optional[str] = Form(None),
    address: Optional[str] = Form(None),
) -> ReportForm:
    return ReportForm(
        title=title,
        description=description,
        latitude=latitude,
        longitude=longitude,
        address=address,
    )


def create_app(settings: Optional[Settings] = None, store: Optional[DocumentStore] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL)

    store = store if store is not None else create_store(settings)
    uploads = UploadStorage(settings.UPLOAD_DIR)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.APP_NAME}...")
        validate_config(settings)
        uploads.ensure_directory()
        ensure_indexes(store)

        yield

        logger.info(f"Shutting down {settings.APP_NAME}...")
        store.close()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

    app.state.settings = settings
    app.state.store = store
    app.state.uploads = uploads
    app.state.auth_service = AuthService(
        store, PasswordHasher(settings.BCRYPT_ROUNDS), TokenManager.from_settings(settings)
    )
    app.state.report_service = ReportService(store, uploads)

    if settings.BACKEND_CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.BACKEND_CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Directory is created in lifespan, before the first request
    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False), name=UPLOADS_ROUTE)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"detail": "Missing or invalid fields", "errors": jsonable_encoder(exc.errors())},
        )

    # ---------- Basic routes ----------

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return f"{settings.APP_NAME} running"

    @app.get("/health", response_model=HealthResponse)
    def health_check(request: Request):
        if request.app.state.store.ping():
            return {"status": "healthy", "database": "connected"}
        return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "disconnected"})

    # ---------- Auth endpoints ----------

    @app.post("/api/auth/register", response_model=AuthResponse)
    def register(req: RegisterRequest, auth_service: AuthService = Depends(get_auth_service)):
        try:
            token, user = auth_service.register(req.name, req.email, req.password)
        except CivicLensError as e:
            if isinstance(e, PersistenceError):
                logger.error(f"Error registering user: {e}")
            raise to_http_exception(e)
        return {"token": token, "user": UserOut.from_user(user)}

    @app.post("/api/auth/login", response_model=AuthResponse)
    def login(req: LoginRequest, auth_service: AuthService = Depends(get_auth_service)):
        try:
            token, user = auth_service.login(req.email, req.password)
        except CivicLensError as e:
            if isinstance(e, PersistenceError):
                logger.error(f"Error logging in: {e}")
            raise to_http_exception(e)
        return {"token": token, "user": UserOut.from_user(user)}

    @app.get("/api/auth/me", response_model=MeResponse)
    def me(user: User = Depends(get_current_user)):
        return {"user": UserOut.from_user(user)}

    # ---------- Report endpoints ----------

    @app.post("/api/reports", response_model=CreateReportResponse)
    def create_report(
        request: Request,
        user: User = Depends(get_current_user),
        form: ReportForm = Depends(get_report_form),
        photo: Optional[UploadFile] = File(None),
        report_service: ReportService = Depends(get_report_service),
    ):
        try:
            report = report_service.create_report(
                user,
                form,
                photo,
                lambda filename: str(request.url_for(UPLOADS_ROUTE, path=filename)),
            )
        except CivicLensError as e:
            if isinstance(e, PersistenceError):
                logger.error(f"Error creating report: {e}")
            raise to_http_exception(e)
        return {"success": True, "report": report}

    @app.get("/api/reports", response_model=List[ReportOut])
    def list_reports(report_service: ReportService = Depends(get_report_service)):
        try:
            return report_service.list_all()
        except PersistenceError as e:
            logger.error(f"Error listing reports: {e}")
            raise to_http_exception(e)

    @app.get("/api/reports/mine", response_model=List[ReportOut])
    def list_my_reports(
        user: User = Depends(get_current_user),
        report_service: ReportService = Depends(get_report_service),
    ):
        try:
            return report_service.list_mine(user)
        except PersistenceError as e:
            logger.error(f"Error listing reports for user {user.id}: {e}")
            raise to_http_exception(e)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
