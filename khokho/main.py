import logging

from fastapi import FastAPI

from khokho.api.routes import router
from khokho.clock_runner import runners
from khokho.config import settings_from_env

settings = settings_from_env()

app = FastAPI(title="khokho-scorer", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


@app.on_event("shutdown")
async def _shutdown() -> None:
    await runners.stop_all()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "khokho-scorer", "version": "0.1.0"}
