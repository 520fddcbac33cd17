# main.py
import os
import threading
import asyncio
import uvicorn
from fastapi import FastAPI
import logging

from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(__file__), '..', '..', '.env'))

from noteclub.http_api.router import router as api_router
from noteclub.http_api.rate_limiter import RateLimitMiddleware
from noteclub.http_api.logging_middleware import LoggingMiddleware
from noteclub.ws.router import start_websocket_server
from noteclub.db.init_collections import init_mongodb
from noteclub.jobs.turn_reminders import run_reminder_loop

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Note Club API",
    version="1.0.0"
)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(LoggingMiddleware)

app.include_router(api_router, prefix="/api/v1", tags=["API v1"])


def run_ws_server():
    asyncio.run(start_websocket_server())


def run_reminders():
    asyncio.run(run_reminder_loop())


def init_database():
    """Create collections and indexes; seed data outside production"""
    try:
        logger.info("🗄️  Initializing database...")
        env = os.getenv("ENV", "prod").lower()
        init_mongodb(drop_existing=False, insert_samples=env != "prod")
    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        logger.warning("⚠️  Server starting without database initialization")


@app.on_event("startup")
def startup_event():
    if not os.getenv("API_TOKEN"):
        logger.warning("⚠️  API_TOKEN is not set; every authenticated request will be rejected")

    init_database()

    threading.Thread(target=run_ws_server, daemon=True).start()
    threading.Thread(target=run_reminders, daemon=True).start()

    logger.info("🚀 Server startup complete!")


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "5000")))
