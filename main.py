"""
Chat Backend - assistant conversations behind trial and subscription entitlements
Azure OpenAI assistant runs, Stripe billing, Auth0 identities
"""

from pathlib import Path
import asyncio
import logging
import traceback

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Import routers
from routers.billing_router import billing_router
from routers.chat_router import chat_router
from routers.user_router import user_router
from utils.rate_limit import RateLimiterMiddleware
from database import init_db, dispose_db
from config.settings import settings, IS_PRODUCTION
from backend.utils.errors import ChatGatewayError, chat_gateway_error_handler, request_validation_error_handler
from backend.utils.responses import error_response

# ============================================================================
# LOGGING
# ============================================================================

# Logging setup - write ALL events to /logs/app.log
LOGS_DIR = Path("./logs")
LOGS_DIR.mkdir(exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOGS_DIR / "app.log"),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

app = FastAPI(title="Chat Backend")


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception on {request.url.path}: {e}\n{traceback.format_exc()}")
            return error_response("internal_error", status=500, message="Internal Server Error")


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: CSP, HSTS, X-Frame-Options, X-Content-Type-Options"""
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        # JSON API only: nothing here should load scripts, frames or styles
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"

        # HTTPS is guaranteed only behind the production proxy
        if IS_PRODUCTION:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"

        return response


app.add_middleware(UncaughtExceptionMiddleware)
app.add_middleware(RateLimiterMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# CORS MUST be near the bottom
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Classified failures (auth, entitlement, assistant, billing) render in the JSON envelope
app.add_exception_handler(ChatGatewayError, chat_gateway_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)

# ============================================================================
# STARTUP CHECKS - ENV KEYS
# ============================================================================

# Map environment variable names to settings attributes
REQUIRED_KEY_MAP = {
    "AZURE_OPENAI_API_KEY": settings.azure_openai_api_key,
    "AZURE_OPENAI_ENDPOINT": settings.azure_openai_endpoint,
    "AZURE_OPENAI_ASSISTANT_ID": settings.azure_openai_assistant_id,
    "STRIPE_SECRET_KEY": settings.stripe_secret_key,
    "STRIPE_WEBHOOK_SECRET": settings.stripe_webhook_secret,
}


@app.on_event("startup")
async def validate_keys():
    """Report missing configuration by name (non-fatal)"""
    missing = [key for key, value in REQUIRED_KEY_MAP.items() if not value]
    if not (settings.auth0_issuer_base_url and settings.auth0_audience) and not settings.jwt_secret_key:
        missing.append("AUTH0_ISSUER_BASE_URL/AUTH0_AUDIENCE or JWT_SECRET_KEY")

    if missing:
        logger.warning(f"⚠️ Missing configuration: {', '.join(missing)}")
    else:
        logger.info("🔐 All configuration keys loaded successfully")


def _log_background_fault(loop, context):
    """Faults in detached tasks are logged instead of taking the process down."""
    exc = context.get("exception")
    logger.error(f"Background task fault: {context.get('message')}", exc_info=exc)


@app.on_event("startup")
async def install_loop_exception_handler():
    asyncio.get_running_loop().set_exception_handler(_log_background_fault)


# Initialize database on startup
@app.on_event("startup")
async def initialize_database():
    """Create the entitlement tables if they do not exist."""
    try:
        await init_db()
        logger.info("✅ Database initialized successfully")
    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise


@app.on_event("shutdown")
async def close_database():
    await dispose_db()


# ============================================================================
# ROUTES
# ============================================================================


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Backend is running and accessible!"


app.include_router(user_router)
app.include_router(chat_router)
app.include_router(billing_router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
