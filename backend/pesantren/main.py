from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
from dotenv import load_dotenv

from pathlib import Path

# main.py lives at backend/pesantren/main.py; .env sits in the project root
env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from pesantren.api.v1.routers import api_router
from pesantren.core.errors import register_exception_handlers
from pesantren.db.database import init_db
from pesantren.db.database_redis import RedisManager
from pesantren.services.chat_notifier import notifier


app = FastAPI(title="Pesantren Chat API")

# CORS so the dashboard frontend can call the API from another origin
origins_env = os.getenv("ALLOWED_ORIGINS", "*")
origins = [origin.strip() for origin in origins_env.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

@app.on_event("startup")
async def on_startup():
    """
    1. Create tables (and demo users when enabled)
    2. Start the Redis relay that feeds the realtime channels
    """
    await init_db()
    await notifier.start()

app.include_router(api_router)

@app.get("/")
async def root():
    """
    Health check.
    """
    return {"message": "Welcome to Pesantren Chat API"}

@app.on_event("shutdown")
async def on_shutdown():
    await notifier.stop()
    await RedisManager.close()
