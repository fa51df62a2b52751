import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from shared_provider.mux import MuxClient
from video_api.cores import injectable
from video_api.cores.config import settings
from video_api.router.router import api_router
from video_api.services.record_store import MemoryRecordStore, MongoRecordStore
from video_api.services.status_notifier import MemoryStatusNotifier, RedisStatusNotifier


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Video API...")

    mongo_client = None
    if settings.RECORD_STORE_BACKEND == "mongo":
        from video_api.cores.mongo import init_db
        mongo_client = await init_db()
        injectable._RecordStore = MongoRecordStore()
        logger.info("Database Connected")
    else:
        injectable._RecordStore = MemoryRecordStore()
        logger.warning("Using in-memory record store; records are lost on restart")

    if settings.STATUS_NOTIFIER_BACKEND == "redis":
        from video_api.cores.redis import get_redis_client
        injectable._Notifier = RedisStatusNotifier(get_redis_client())
        logger.info("Status notifier on Redis")
    else:
        injectable._Notifier = MemoryStatusNotifier()

    injectable._Provider = MuxClient(
        token_id=settings.MUX_TOKEN_ID,
        token_secret=settings.MUX_TOKEN_SECRET,
        base_url=settings.MUX_API_URL
    )
    if not settings.MUX_WEBHOOK_SECRET:
        logger.warning("MUX_WEBHOOK_SECRET not set; webhook signatures are not verified")

    yield

    logger.info("Stopping Video API...")
    await injectable._Provider.close()
    await injectable._Notifier.close()
    await injectable._RecordStore.close()
    if mongo_client is not None:
        await mongo_client.close()
    injectable._Provider = None
    injectable._Notifier = None
    injectable._RecordStore = None


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan,
        swagger_ui_parameters={"syntaxHighlight": {"theme": "nord"}}
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.UPLOAD_CORS_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/health")
    def health():
        return {"status": "ok", "service": "video-api"}

    return app


app = create_app()


def run():
    logging.basicConfig(level=logging.INFO)
    uvicorn.run("video_api.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
