from fastapi import APIRouter, Depends
import logging

from models.submission import CodeRunRequest
from .auth import get_current_user
from .dependencies import get_orchestrator

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/code", tags=["code"])


@router.post("/run")
async def run_code(body: CodeRunRequest, current_user: dict = Depends(get_current_user),
                   orchestrator=Depends(get_orchestrator)):
    """Run code against custom input. Nothing is scored or stored."""
    logger.info(f"Code run requested by {current_user['id']} ({body.language})")
    return await orchestrator.run_code(current_user, body.code, body.language, body.stdin)
