from fastapi import Depends

import settings
from database import get_db
from services.judge_client import JudgeClient
from services.orchestrator import SubmissionOrchestrator
from services.rate_limit import TokenBucketRateLimiter
from services.store import AssessmentStore

# shared by every request of this process; swap it through dependency overrides
execution_limiter = TokenBucketRateLimiter(settings.CODE_RUN_BURST, settings.CODE_RUN_REFILL_SECONDS)


def get_store(db=Depends(get_db)) -> AssessmentStore:
    return AssessmentStore(db)


def get_judge_client() -> JudgeClient:
    return JudgeClient()


def get_rate_limiter():
    return execution_limiter


def get_orchestrator(store=Depends(get_store), judge=Depends(get_judge_client),
                     rate_limiter=Depends(get_rate_limiter)) -> SubmissionOrchestrator:
    return SubmissionOrchestrator(store, judge, rate_limiter)
