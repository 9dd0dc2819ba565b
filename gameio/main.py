from fastapi import FastAPI
import logging

from gameio.api.routes import router
from gameio.config import load_settings

settings = load_settings()

app = FastAPI(title="gameio", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "gameio", "version": "0.1.0"}
