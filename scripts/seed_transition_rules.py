#!/usr/bin/env python3
"""
Seed sample pipeline candidates and automated transition rules
"""
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from motor.motor_asyncio import AsyncIOMotorClient
import os
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent.parent / 'backend'
load_dotenv(ROOT_DIR / '.env')

mongo_url = os.environ['MONGO_URL']
db_name = os.environ['DB_NAME']

SAMPLE_RULES = [
    {
        "rule_id": "rule_hr_to_written",
        "rule_name": "Shortlisted by HR -> Written Test",
        "from_stage": "hr",
        "to_stage": "written_test",
        "enabled": True,
        "conditions": {"hr_screening_passed": True},
        "auto_send_notification": True,
        "notification_template": "stage_change",
        "require_approval": False
    },
    {
        "rule_id": "rule_written_to_demo",
        "rule_name": "Written Test Passed -> Demo Slot",
        "from_stage": "written_test",
        "to_stage": "demo_slot",
        "enabled": True,
        "conditions": {"written_test_score": {"$gte": 60}},
        "auto_send_notification": True,
        "notification_template": None,
        "require_approval": False
    },
    {
        "rule_id": "rule_pending_to_hr",
        "rule_name": "Application Complete -> HR Screening",
        "from_stage": "pending",
        "to_stage": "hr",
        "enabled": False,
        "conditions": {"email": {"$exists": True}},
        "auto_send_notification": False,
        "notification_template": None,
        "require_approval": True
    }
]

SAMPLE_CANDIDATES = [
    {
        "candidate_id": "cand_seed0001",
        "name": "Priya Sharma",
        "email": "priya.sharma@example.com",
        "status": "hr",
        "job_id": "job_seed0001",
        "hr_screening_passed": True,
        "updated_at": "2025-01-01T00:00:00+00:00"
    },
    {
        "candidate_id": "cand_seed0002",
        "name": "Daniel Okafor",
        "email": "daniel.okafor@example.com",
        "status": "written_test",
        "job_id": "job_seed0001",
        "written_test_score": 72,
        "updated_at": "2025-01-01T00:00:00+00:00"
    }
]

async def seed_rules():
    """Seed sample rules and candidates"""
    client = AsyncIOMotorClient(mongo_url)
    db = client[db_name]

    for rule in SAMPLE_RULES:
        existing_rule = await db.transition_rules.find_one({"rule_id": rule["rule_id"]})
        if existing_rule:
            print(f"✓ Rule {rule['rule_id']} already exists")
        else:
            await db.transition_rules.insert_one(dict(rule))
            print(f"✓ Created rule: {rule['rule_name']} ({rule['rule_id']})")

    for candidate in SAMPLE_CANDIDATES:
        existing_candidate = await db.candidates.find_one({"candidate_id": candidate["candidate_id"]})
        if existing_candidate:
            print(f"✓ Candidate {candidate['candidate_id']} already exists")
        else:
            await db.candidates.insert_one(dict(candidate))
            print(f"✓ Created candidate: {candidate['name']} (stage: {candidate['status']})")

    client.close()

if __name__ == "__main__":
    asyncio.run(seed_rules())
