import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that read env vars

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dcbus.config import CORS_ORIGINS, LOG_LEVEL, ROUTES_DIR
from dcbus.exceptions import RouteDataError
from dcbus.navigation_service import NavigationStore
from dcbus.network import NetworkProvider

logger = logging.getLogger("dcbus")
logging.basicConfig(level=LOG_LEVEL)

# Global state populated during startup
app_state: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the route network once and create the rider's navigation store."""
    logger.info(f"Loading route definitions from {ROUTES_DIR}...")
    try:
        provider = NetworkProvider.from_directory(ROUTES_DIR)
    except RouteDataError as e:
        logger.error(f"Route data unavailable, serving an empty network: {e}")
        provider = NetworkProvider([])

    snapshot = provider.get()
    app_state["network"] = provider
    logger.info(f"Network ready: {len(snapshot.routes)} routes, {len(snapshot.stops)} stops")

    store = NavigationStore()
    app_state["store"] = store

    yield

    logger.info("Shutting down...")
    store.stop_tracking()
    app_state.clear()


app = FastAPI(title="DCBus Navigator API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from dcbus.routes import router  # noqa: E402

app.include_router(router, prefix="/api")
