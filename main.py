import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings
from core.database import create_db_and_tables
from core.trial_middleware import TrialLimitExceeded, trial_limit_exception_handler
from routes.auth import router as auth_router
from routes.billing import router as billing_router
from routes.invitation import router as invitation_router
from routes.mail_items import router as mail_items_router
from routes.organization import router as organization_router
from routes.recipients import router as recipients_router
from routes.webhooks import router as webhooks_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (DB initialization)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info("✅ Database tables created on startup.")
    yield
    logger.info("✅ Application shutting down.")

# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Sortify Backend")

allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 402 Payment Required for trial / plan limits
app.add_exception_handler(TrialLimitExceeded, trial_limit_exception_handler)


# =========================================
# 📦 Routers
# =========================================
app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
app.include_router(organization_router)
app.include_router(invitation_router)
app.include_router(recipients_router)
app.include_router(mail_items_router)
app.include_router(billing_router)
app.include_router(webhooks_router)  # ✅ Stripe webhooks


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Backend is running"}
