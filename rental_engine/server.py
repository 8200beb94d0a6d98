from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime, timezone
import logging

from .config import CORS_ORIGINS
from .database import init_db, close_db
from .redis_service import redis_service
from .api.routes import availability, bookings, extras, ledger, quotes

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Rental Pricing & Ledger API", version="1.0.0")
api_router = APIRouter(prefix="/api")

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Startup and shutdown events
@app.on_event("startup")
async def startup():
    await init_db()
    logger.info("Database initialised")


@app.on_event("shutdown")
async def shutdown():
    await redis_service.disconnect()
    await close_db()
    logger.info("Database and Redis disconnected")


@api_router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


app.include_router(api_router)
app.include_router(quotes.router)
app.include_router(availability.router)
app.include_router(extras.router)
app.include_router(bookings.router)
app.include_router(ledger.router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("rental_engine.server:app", host="0.0.0.0", port=8001, reload=True)
