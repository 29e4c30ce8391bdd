from motor.motor_asyncio import AsyncIOMotorClient
import logging

import settings

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(settings.MONGODB_URI)
db = client[settings.DB_NAME]


async def init_db(database=None):
    database = database if database is not None else db
    await database.users.create_index("id", unique=True)
    await database.questions.create_index("id", unique=True)
    await database.assessments.create_index("id", unique=True)
    await database.assessment_submissions.create_index("id", unique=True)
    # one submission per (assessment, student)
    await database.assessment_submissions.create_index(
        [("assessmentId", 1), ("studentId", 1)], unique=True
    )
    await database.assessment_submissions.create_index([("assessmentId", 1), ("status", 1)])
    logger.info("Assessment indexes ensured")


def get_db():
    return db
