# backend/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from config import settings
from database import SessionLocal, init_db
from services.cart import sweep_expired_carts
from services.errors import ShopError
from services.marketplace import get_marketplace_sync
from services.scheduler import Scheduler

load_dotenv()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Routers
from routes.cart import router as cart_router
from routes.checkout import router as checkout_router
from routes.webhooks import router as webhooks_router
from routes.admin_orders import router as admin_orders_router
from routes.stock import router as stock_router
from routes.admin_discounts import router as admin_discounts_router
from routes.admin_notifications import router as admin_notifications_router

scheduler = Scheduler()


def register_jobs(scheduler: Scheduler) -> None:
    scheduler.add_job("cart_expiry_sweep", settings.CART_SWEEP_INTERVAL_SECONDS,
                      lambda: sweep_expired_carts(SessionLocal))
    scheduler.add_job("marketplace_inventory_sync", settings.MARKETPLACE_SYNC_INTERVAL_SECONDS,
                      get_marketplace_sync().sync_inventory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if settings.SCHEDULER_ENABLED:
        register_jobs(scheduler)
        scheduler.start()
    yield
    scheduler.stop()


app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)

# CORS Configuration
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if settings.FRONTEND_URL:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.__class__.__name__},
    )


# Router registration
app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(admin_orders_router)
app.include_router(stock_router)
app.include_router(admin_discounts_router)
app.include_router(admin_notifications_router)


@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}
