"""
FastAPI dependency injection for database, authentication and services.

Provides injectable dependencies for:
- Database connections (asyncpg pool)
- User authentication (Supabase JWT validation)
- Repository and service instances built once at startup
- Rate limiting of the public submission endpoints

Routes resolve services through ``request.app.state.services`` so tests can
replace any of them with ``app.dependency_overrides``.
"""

import json
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import aiohttp
import asyncpg
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

from api.src.config import Settings, get_settings
from api.src.models.google import CurrentUser
from api.src.repositories.form_repo import FormRepository
from api.src.repositories.google_token_repo import GoogleTokenRepository
from api.src.repositories.integration_repo import IntegrationRepository
from api.src.repositories.sheet_connection_repo import SheetConnectionRepository
from api.src.repositories.submission_repo import SubmissionRepository
from api.src.services.calendar_service import CalendarService
from api.src.services.drive_service import DriveService
from api.src.services.email_service import EmailService
from api.src.services.google_auth import GoogleAuthService
from api.src.services.google_client import GoogleAPIClient
from api.src.services.sheets_service import SheetsService
from api.src.services.submission_service import SubmissionService
from shared.metrics import SubmissionMetrics

logger = structlog.get_logger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)

# Rate limiter for the public submission endpoints
limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_settings().rate_limit_enabled,
)


def submission_rate_limit() -> str:
    return get_settings().rate_limit


# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================


async def _init_connection(conn: asyncpg.Connection) -> None:
    """Decode json/jsonb columns to Python objects."""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


async def init_db_pool(settings: Settings) -> asyncpg.Pool:
    """
    Initialize database connection pool.

    Should be called during application startup.

    Returns:
        asyncpg connection pool
    """
    try:
        pool = await asyncpg.create_pool(
            str(settings.database_url),
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_size,
            max_inactive_connection_lifetime=settings.database_max_inactive_lifetime,
            command_timeout=settings.database_command_timeout,
            init=_init_connection,
        )

        logger.info(
            "database_pool_initialized",
            pool_size=settings.database_pool_size,
            database=str(settings.database_url).split("@")[-1]
        )

        return pool

    except Exception as e:
        logger.error("database_pool_init_failed", error=str(e))
        raise


# ============================================================================
# SERVICE CONTAINER
# ============================================================================


@dataclass
class ServiceContainer:
    """Repositories and services shared by all requests."""

    form_repo: FormRepository
    submission_repo: SubmissionRepository
    connection_repo: SheetConnectionRepository
    token_repo: GoogleTokenRepository
    integration_repo: IntegrationRepository
    google_client: GoogleAPIClient
    google_auth: GoogleAuthService
    sheets: SheetsService
    drive: DriveService
    calendar: CalendarService
    email: EmailService
    submissions: SubmissionService


def build_services(
    settings: Settings,
    pool: asyncpg.Pool,
    session: aiohttp.ClientSession,
    metrics: Optional[SubmissionMetrics] = None,
) -> ServiceContainer:
    """
    Wire repositories and services around the shared pool and HTTP session.
    """
    form_repo = FormRepository(pool)
    submission_repo = SubmissionRepository(pool)
    connection_repo = SheetConnectionRepository(pool)
    token_repo = GoogleTokenRepository(pool)
    integration_repo = IntegrationRepository(pool)

    google_client = GoogleAPIClient(session, timeout=settings.google_request_timeout)
    google_auth = GoogleAuthService(settings, token_repo, connection_repo, metrics)

    sheets = SheetsService(google_client, google_auth, connection_repo)
    drive = DriveService(google_client, google_auth, integration_repo)
    calendar = CalendarService(google_client, google_auth, integration_repo)
    email = EmailService(settings, session, integration_repo)

    submissions = SubmissionService(
        settings=settings,
        form_repo=form_repo,
        submission_repo=submission_repo,
        connection_repo=connection_repo,
        auth=google_auth,
        client=google_client,
        sheets=sheets,
        drive=drive,
        calendar=calendar,
        email=email,
        metrics=metrics,
    )

    return ServiceContainer(
        form_repo=form_repo,
        submission_repo=submission_repo,
        connection_repo=connection_repo,
        token_repo=token_repo,
        integration_repo=integration_repo,
        google_client=google_client,
        google_auth=google_auth,
        sheets=sheets,
        drive=drive,
        calendar=calendar,
        email=email,
        submissions=submissions,
    )


def get_services(request: Request) -> ServiceContainer:
    """
    Get the service container created during startup.

    Raises:
        RuntimeError: If the application has not started
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        logger.error("services_not_initialized")
        raise RuntimeError("Services not initialized. The application lifespan has not run.")
    return services


def get_submission_service(request: Request) -> SubmissionService:
    return get_services(request).submissions


def get_sheets_service(request: Request) -> SheetsService:
    return get_services(request).sheets


def get_drive_service(request: Request) -> DriveService:
    return get_services(request).drive


def get_calendar_service(request: Request) -> CalendarService:
    return get_services(request).calendar


def get_google_auth_service(request: Request) -> GoogleAuthService:
    return get_services(request).google_auth


def get_form_repository(request: Request) -> FormRepository:
    return get_services(request).form_repo


def get_submission_repository(request: Request) -> SubmissionRepository:
    return get_services(request).submission_repo


def get_sheet_connection_repository(request: Request) -> SheetConnectionRepository:
    return get_services(request).connection_repo


# ============================================================================
# AUTHENTICATION DEPENDENCIES
# ============================================================================


def get_settings_dependency() -> Settings:
    return get_settings()


async def get_token_from_header(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> str:
    """
    Extract the bearer token from the Authorization header.

    Raises:
        HTTPException: If the token is missing
    """
    if not credentials or not credentials.credentials:
        logger.warning("auth_missing_credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return credentials.credentials


def decode_access_token(token: str, settings: Settings) -> Optional[CurrentUser]:
    """
    Validate a Supabase access token.

    Args:
        token: JWT issued by Supabase Auth
        settings: Application settings

    Returns:
        The user, or None if the token is invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.supabase_jwt_algorithm],
            audience=settings.supabase_jwt_audience,
        )
    except JWTError as e:
        logger.warning("token_decode_failed", error=str(e))
        return None

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        logger.warning("token_invalid_subject")
        return None

    return CurrentUser(id=user_id, email=payload.get("email"), role=payload.get("role"))


async def get_current_user(
    token: str = Depends(get_token_from_header),
    settings: Settings = Depends(get_settings_dependency),
) -> CurrentUser:
    """
    Get the authenticated user from the Supabase access token.

    Raises:
        HTTPException: If the token is invalid

    Example:
        @router.get("/api/sheets")
        async def list_sheets(user: CurrentUser = Depends(get_current_user)):
            ...
    """
    current_user = decode_access_token(token, settings)

    if not current_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    logger.debug("user_authenticated", user_id=str(current_user.id))
    return current_user
