from contextlib import asynccontextmanager
import logging

from fastapi import APIRouter, FastAPI, Request
from starlette.middleware.cors import CORSMiddleware

import likes
import notifications
import realtime
import recipes
import users
import videos
from database import connect, ensure_indexes
from errors import api_response, register_exception_handlers
from media import CloudinaryMediaStore
from realtime import ConnectionRegistry
from settings import get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

settings = get_settings()

# MongoDB connection
client = connect(settings)
db = client[settings.db_name]


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await ensure_indexes(app.state.db)
    except Exception:
        logger.exception("Could not create indexes")
    yield
    client.close()


app = FastAPI(title="Recipe Share API", lifespan=lifespan)

# Process-wide collaborators; tests swap these on app.state
app.state.db = db
app.state.registry = ConnectionRegistry(send_timeout=settings.socket_send_timeout_seconds)
app.state.media_store = CloudinaryMediaStore(settings)

# Create a router with the /api/v1 prefix
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(users.router)
api_router.include_router(recipes.router)
api_router.include_router(videos.router)
api_router.include_router(likes.router)
api_router.include_router(notifications.router)
api_router.include_router(realtime.router)


# Health check
@api_router.get("/")
async def root():
    return api_response(200, {}, "Recipe Share API is running")


# Include the router in the main app
app.include_router(api_router)

register_exception_handlers(app)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("Incoming request: %s %s", request.method, request.url.path)
    return await call_next(request)


app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
