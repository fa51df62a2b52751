from beanie import init_beanie
from pymongo import AsyncMongoClient

from video_api.cores.config import settings
from video_api.models.record import RecordDocument


async def init_db() -> AsyncMongoClient:
    client = AsyncMongoClient(settings.MONGODB_URL)

    await init_beanie(
        database=client[settings.DATABASE_NAME],
        document_models=[RecordDocument]
    )
    return client
