import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config import settings
from core.exceptions import WorkflowError
from core.limiter import limiter
from database import connect_db, close_db

# Routers
from routers import driver_orders, admin, workflow, earnings

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _auto_release_stale_assignments() -> None:
    """
    Toutes les AUTO_RELEASE_INTERVAL_SECONDS : rend au pool les commandes
    acceptées depuis plus de AUTO_RELEASE_MINUTES sans départ du livreur.
    """
    from services.assignment_service import release_stale_assignments
    while True:
        await asyncio.sleep(settings.AUTO_RELEASE_INTERVAL_SECONDS)
        try:
            await release_stale_assignments()
        except Exception as exc:
            logger.error(f"Erreur auto-release commandes : {exc}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await connect_db()
    task = asyncio.create_task(_auto_release_stale_assignments())
    logger.info("GigaEats Driver API started")
    yield
    # Shutdown
    task.cancel()
    await close_db()
    logger.info("GigaEats Driver API stopped")


app = FastAPI(
    title="GigaEats Driver API",
    description="Workflow livreur : acceptation, collecte, livraison avec preuves",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else ["https://gigaeats.my"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(driver_orders.router, prefix="/api/driver", tags=["Driver"])
app.include_router(workflow.router, prefix="/api/workflow", tags=["Workflow"])
app.include_router(earnings.router, prefix="/api/earnings", tags=["Earnings"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "app": "gigaeats-driver", "version": "1.0.0"}
