from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi.middleware import SlowAPIMiddleware
from api.v1 import auth, users, subscriptions, commissions, products, orders, coupons, lgpd, admin
from core.config import settings
from db.base import initialize_database
from db.session import engine, SessionLocal
from sqlalchemy import text
from utils.errors import register_exception_handlers
from utils.logging_config import configure_logging, RequestContextMiddleware
from utils.rate_limit import limiter

# Configure logging with date-based files and TTL retention
logger = configure_logging("vitaclube")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG
)

register_exception_handlers(app)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# Add GZip compression for larger JSON payloads
app.add_middleware(GZipMiddleware, minimum_size=500)

# Add logging context middleware to capture user_id and API path
app.add_middleware(RequestContextMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router, tags=["Authentication"])
app.include_router(users.router, tags=["Users"])
app.include_router(subscriptions.router, tags=["Subscriptions"])
app.include_router(commissions.router, tags=["Commissions"])
app.include_router(products.router, tags=["Products"])
app.include_router(orders.router, tags=["Orders"])
app.include_router(coupons.router, tags=["Coupons"])
app.include_router(lgpd.router, tags=["LGPD"])
app.include_router(admin.router, tags=["Admin"])

@app.on_event("startup")
async def startup_db_client():
    await initialize_database()
    logger.info(f"Application startup complete ({settings.ENVIRONMENT})")

@app.on_event("shutdown")
async def shutdown_db_client():
    try:
        await engine.dispose()
        logger.info("Disposed SQL engine")
    except Exception as e:
        logger.warning(f"Engine dispose failed: {e}")
    logger.info("Application shutdown complete")

@app.get("/")
async def root():
    return {"message": "VitaClube API", "version": settings.VERSION}

@app.get("/health")
async def health_check():
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health SQL check failed: {e}")
        db_status = "unavailable"
    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "environment": settings.ENVIRONMENT,
        "version": settings.VERSION,
    }
