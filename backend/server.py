from fastapi import FastAPI, APIRouter, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import os
import logging
from pathlib import Path
from typing import Optional
from datetime import datetime

from core.clock import Clock
from core.proof_storage import LocalProofStorage
from ledger_service import LedgerService
from ledger_routes import create_ledger_routes
from permissions import PermissionChecker
from project_service import ProjectService
from project_routes import create_project_routes

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PROOF_PUBLIC_PREFIX = "/uploads/evidences"


def _env_flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


def create_app(
    db: AsyncIOMotorDatabase,
    client: Optional[AsyncIOMotorClient] = None,
    clock: Optional[Clock] = None,
    storage: Optional[LocalProofStorage] = None,
    use_transactions: bool = False
) -> FastAPI:
    """Build the API around an already-connected database"""

    app = FastAPI(
        title="Financial Ledger & Entitlement Engine",
        version="1.0.0",
        description="Role-scoped ledger of revenues, expenses, commissions and adjustments"
    )

    # Initialize services
    permission_checker = PermissionChecker(db)
    ledger_service = LedgerService(
        db, client=client, clock=clock, storage=storage, use_transactions=use_transactions
    )
    project_service = ProjectService(db, client=client, clock=clock, use_transactions=use_transactions)

    api_router = APIRouter(prefix="/api")

    @api_router.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow(),
            "version": "1.0.0"
        }

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        logger.info(f"[API] Rejected malformed request to {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": {
                "error": "VALIDATION_ERROR",
                "message": "Request body or parameters are invalid",
                "details": {"errors": jsonable_encoder(exc.errors())}
            }}
        )

    app.include_router(api_router)
    app.include_router(create_ledger_routes(ledger_service, permission_checker))
    app.include_router(create_project_routes(project_service, permission_checker))

    if storage is not None:
        app.mount(
            storage.public_prefix,
            StaticFiles(directory=str(storage.upload_dir), check_dir=False),
            name="evidences"
        )

    # CORS middleware
    origins = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=origins or ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if client is not None:
        @app.on_event("shutdown")
        async def shutdown_db_client():
            client.close()

    return app


# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'ledger')]

app = create_app(
    db,
    client=client,
    storage=LocalProofStorage(
        os.environ.get('PROOF_UPLOAD_DIR', str(ROOT_DIR / 'uploads' / 'evidences')),
        public_prefix=PROOF_PUBLIC_PREFIX
    ),
    use_transactions=_env_flag('MONGO_TRANSACTIONS')
)
