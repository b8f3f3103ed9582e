import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.auth import TokenVerifier
from core.config import settings
from core.errors import InvalidToken, NoCredential, StorefrontError
from core.oidc import IdentityProvider
from db.database import create_db_and_tables, engine
from routers.auth import router as auth_router
from routers.images import router as images_router
from routers.items import router as items_router
from routers.orders import router as orders_router

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not (settings.oidc_issuer and settings.client_id and settings.client_secret):
        raise RuntimeError("Missing one of AZUREAD_TENANT_ID (or OIDC_ISSUER), AZUREAD_APP_ID, AZUREAD_VALUE")

    await create_db_and_tables()
    logger.info("Connected to database.")

    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    try:
        provider = await IdentityProvider.discover(
            http,
            settings.oidc_issuer,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_url=settings.oauth_redirect_url,
            scopes=settings.oauth_scopes,
            graph_me_url=settings.graph_me_url,
        )
        app.state.identity_provider = provider
        app.state.token_verifier = TokenVerifier(
            provider.key_set,
            issuer=provider.metadata.issuer,
            audience=settings.client_id,
            leeway=settings.jwt_leeway_seconds,
            subject_claim=settings.auth_subject_claim,
            roles_claim=settings.auth_roles_claim,
        )
        yield
    finally:
        await http.aclose()
        await engine.dispose()


app = FastAPI(
    title="Storefront API",
    description="Catalog and order placement behind OpenID Connect sign-in",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    headers = None
    if isinstance(exc, (NoCredential, InvalidToken)):
        headers = {"WWW-Authenticate": "Bearer"}
    return PlainTextResponse(exc.message, status_code=exc.status_code, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        err = errors[0]
        loc = ".".join(str(part) for part in err.get("loc", ()))
        message = f"{loc}: {err.get('msg', 'invalid value')}"
    else:
        message = "invalid request"
    return PlainTextResponse(message, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("Unhandled storage error on %s %s: %r", request.method, request.url.path, exc)
    return PlainTextResponse("storage error", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


# Sign-in routes (login, redirect, logout, me)
app.include_router(auth_router, tags=["auth"])

# Catalog and orders
app.include_router(items_router, prefix="/items", tags=["items"])
app.include_router(orders_router, prefix="/orders", tags=["orders"])

# Item pictures
app.include_router(images_router, prefix="/images", tags=["images"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8080, reload=True)
