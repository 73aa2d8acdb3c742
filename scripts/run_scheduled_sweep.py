#!/usr/bin/env python3
"""
Scheduled sweep: run every enabled transition rule, stage by stage
"""
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from motor.motor_asyncio import AsyncIOMotorClient
import os
from dotenv import load_dotenv

from backend.notification_service import NotificationDispatcher
from backend.transition_engine import TransitionEngine
from backend.transition_models import DEFAULT_DEDUP_WINDOW_SECONDS
from backend.transition_store import TransitionStore

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent / 'backend'
load_dotenv(ROOT_DIR / '.env')

mongo_url = os.environ['MONGO_URL']
db_name = os.environ['DB_NAME']

logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("scheduled_sweep")

async def run_sweep():
    """Evaluate all enabled rules for every stage that has one"""
    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    store = TransitionStore(db)
    engine = TransitionEngine(
        store=store,
        dispatcher=NotificationDispatcher(db),
        dedup_window_seconds=int(os.environ.get('TRANSITION_DEDUP_WINDOW_SECONDS', DEFAULT_DEDUP_WINDOW_SECONDS))
    )

    total = 0
    for stage in await store.list_enabled_stages():
        result = await engine.evaluate_stage_transitions(stage, trigger_type="scheduled")
        moved = [t for t in result["transitions"] if t["status"] == "success"]
        total += len(moved)
        logger.info(f"Stage {stage}: {result['rulesEvaluated']} rules, {len(moved)} candidates moved")

    await engine.drain_notifications()
    logger.info(f"Sweep complete: {total} transitions executed")

    client.close()

if __name__ == "__main__":
    asyncio.run(run_sweep())
