import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from . import config
from .changes import feed
from .db import init_db
from .errors import register_error_handlers
from .mqtt import MqttBus
from .sweeper import OverdueSweeper

from .routers.health import router as health_router
from .routers.auth import router as auth_router
from .routers.profiles import router as profiles_router
from .routers.assets import router as assets_router
from .routers.requests import router as requests_router
from .routers.activity import router as activity_router
from .routers.reports import router as reports_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    init_db()

    app.state.mqtt = MqttBus()
    app.state.mqtt.attach(feed)
    app.state.mqtt.start()

    app.state.sweeper = OverdueSweeper()
    app.state.sweeper.start()

    try:
        yield
    finally:
        app.state.sweeper.stop()
        app.state.mqtt.stop()


app = FastAPI(title="School Asset Loan Portal API", lifespan=lifespan)
register_error_handlers(app)

# All routers mounted here
app.include_router(health_router, prefix="/api")
app.include_router(auth_router, prefix="/api")
app.include_router(profiles_router, prefix="/api")
app.include_router(assets_router, prefix="/api")
app.include_router(requests_router, prefix="/api")
app.include_router(activity_router, prefix="/api")
app.include_router(reports_router, prefix="/api")
