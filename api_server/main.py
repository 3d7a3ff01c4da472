# api_server/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api_server.routers import flows, health
from api_server.services import scheduler
from sms_flows.conf import FLOW_SCHEDULER_ENABLED

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the in-process cron scheduler if enabled; otherwise an external cron calls /flows/process."""
    if FLOW_SCHEDULER_ENABLED:
        scheduler.start_scheduler()

    logger.info("API server started")

    yield

    scheduler.stop_scheduler()


app = FastAPI(title="SMS Flow Engine", lifespan=lifespan)

app.include_router(health.router, tags=["health"])
app.include_router(flows.router, tags=["flows"])
