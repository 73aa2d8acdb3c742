from fastapi import FastAPI, APIRouter, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from typing import Optional, List

from backend.notification_service import NotificationDispatcher
from backend.transition_engine import TransitionEngine
from backend.transition_models import (
    DEFAULT_DEDUP_WINDOW_SECONDS,
    TransitionExecution,
    TransitionRequest,
)
from backend.transition_store import TransitionStore

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB connection
mongo_url = os.environ['MONGO_URL']
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ['DB_NAME']]

# Transition engine configuration
DEDUP_WINDOW_SECONDS = int(os.environ.get('TRANSITION_DEDUP_WINDOW_SECONDS', DEFAULT_DEDUP_WINDOW_SECONDS))

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

transition_engine = TransitionEngine(
    store=TransitionStore(db),
    dispatcher=NotificationDispatcher(db),
    dedup_window_seconds=DEDUP_WINDOW_SECONDS
)


def get_transition_engine() -> TransitionEngine:
    return transition_engine


# Create the main app
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed or ambiguous evaluate requests are input errors (400)"""
    messages = []
    for err in exc.errors():
        ctx_error = err.get("ctx", {}).get("error")
        messages.append(str(ctx_error) if ctx_error else err.get("msg", "Invalid request"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": "; ".join(messages) or "Invalid request"}
    )


# ============ STAGE TRANSITIONS ============

@api_router.post("/stage-transitions/evaluate")
async def evaluate_stage_transitions(
    request: TransitionRequest,
    engine: TransitionEngine = Depends(get_transition_engine)
):
    """Evaluate and execute automated stage transitions"""
    logger.info(
        f"Evaluating stage transitions: candidateId={request.candidate_id} "
        f"ruleId={request.rule_id} fromStage={request.from_stage} triggerType={request.trigger_type}"
    )

    try:
        if request.candidate_id:
            result = await engine.evaluate_candidate_transitions(
                request.candidate_id,
                trigger_type=request.trigger_type or "event",
                event_data=request.event_data
            )
        elif request.rule_id:
            result = await engine.evaluate_rule_for_all_candidates(
                request.rule_id,
                trigger_type=request.trigger_type or "scheduled",
                event_data=request.event_data
            )
        else:
            result = await engine.evaluate_stage_transitions(
                request.from_stage,
                trigger_type=request.trigger_type or "scheduled",
                event_data=request.event_data
            )
    except Exception as e:
        logger.error(f"Error in evaluate-stage-transitions: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e)}
        )

    return result


@api_router.get("/stage-transitions/executions", response_model=List[TransitionExecution])
async def list_transition_executions(
    candidate_id: Optional[str] = None,
    rule_id: Optional[str] = None,
    limit: int = 50,
    engine: TransitionEngine = Depends(get_transition_engine)
):
    """Audit trail of executed transitions, newest first"""
    return await engine.store.list_executions(
        candidate_id=candidate_id,
        rule_id=rule_id,
        limit=max(1, min(limit, 500))
    )


@api_router.get("/health")
async def health_check():
    return {"status": "healthy"}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("shutdown")
async def shutdown_db_client():
    await transition_engine.drain_notifications()
    client.close()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.environ.get('HOST', '0.0.0.0'),
        port=int(os.environ.get('PORT', 8001))
    )
