"""
Transition Store - MongoDB access for the stage transition engine

Rules are read-only here. Candidates are read and only ever have their
status/updated_at written. Condition checks run inside MongoDB so the engine
never needs to understand the condition grammar.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List

from backend.transition_errors import StageUpdateError
from backend.transition_models import (
    Candidate,
    ConditionResult,
    TransitionExecution,
    TransitionRule,
)

logger = logging.getLogger(__name__)


def build_condition_filter(candidate_id: str, conditions: Optional[dict]) -> dict:
    """Scope a rule's condition document to a single candidate"""
    if not conditions:
        return {"candidate_id": candidate_id}
    return {"$and": [{"candidate_id": candidate_id}, conditions]}


class TransitionStore:
    """Candidate, rule and execution-log access backed by Motor"""

    def __init__(self, db):
        self.db = db

    # ============ CANDIDATES ============

    async def get_candidate(self, candidate_id: str) -> Optional[Candidate]:
        doc = await self.db.candidates.find_one({"candidate_id": candidate_id}, {"_id": 0})
        return Candidate(**doc) if doc else None

    async def list_candidates_in_stage(self, stage: str) -> List[dict]:
        """Raw candidate documents; each one is validated by the caller"""
        return await self.db.candidates.find({"status": stage}, {"_id": 0}).to_list(None)

    async def update_candidate_status(self, candidate_id: str, new_status: str, updated_at: str):
        result = await self.db.candidates.update_one(
            {"candidate_id": candidate_id},
            {"$set": {"status": new_status, "updated_at": updated_at}}
        )
        if result.matched_count == 0:
            raise StageUpdateError(f"Candidate {candidate_id} disappeared before stage update")

    # ============ RULES ============

    async def get_enabled_rule(self, rule_id: str) -> Optional[TransitionRule]:
        doc = await self.db.transition_rules.find_one(
            {"rule_id": rule_id, "enabled": True},
            {"_id": 0}
        )
        return TransitionRule(**doc) if doc else None

    async def list_enabled_rules(self, from_stage: str) -> List[TransitionRule]:
        docs = await self.db.transition_rules.find(
            {"from_stage": from_stage, "enabled": True},
            {"_id": 0}
        ).to_list(None)
        return [TransitionRule(**doc) for doc in docs]

    async def list_enabled_stages(self) -> List[str]:
        return await self.db.transition_rules.distinct("from_stage", {"enabled": True})

    async def check_transition_conditions(self, candidate_id: str, rule_id: str) -> ConditionResult:
        """Evaluate a rule's conditions against a candidate inside MongoDB"""
        rule_doc = await self.db.transition_rules.find_one(
            {"rule_id": rule_id},
            {"_id": 0, "conditions": 1}
        )
        if not rule_doc:
            return ConditionResult(met=False, error="Rule not found")

        conditions = rule_doc.get("conditions") or {}
        matched = await self.db.candidates.count_documents(
            build_condition_filter(candidate_id, conditions),
            limit=1
        )

        details = {
            "rule_id": rule_id,
            "condition_fields": sorted(conditions.keys()),
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }
        if matched:
            return ConditionResult(met=True, details=details)
        return ConditionResult(
            met=False,
            reason="Candidate does not satisfy rule conditions",
            details=details
        )

    # ============ EXECUTION LOG ============

    async def find_recent_successful_execution(
        self,
        candidate_id: str,
        from_stage: str,
        to_stage: str,
        since: str
    ) -> Optional[dict]:
        return await self.db.transition_executions.find_one(
            {
                "candidate_id": candidate_id,
                "from_stage": from_stage,
                "to_stage": to_stage,
                "execution_result": "success",
                "executed_at": {"$gte": since}
            },
            {"_id": 0, "execution_id": 1}
        )

    async def find_latest_activity_log(
        self,
        candidate_id: str,
        old_stage: str,
        new_stage: str
    ) -> Optional[str]:
        docs = await self.db.pipeline_activity_logs.find(
            {"candidate_id": candidate_id, "old_stage": old_stage, "new_stage": new_stage},
            {"_id": 0, "activity_log_id": 1}
        ).sort("created_at", -1).limit(1).to_list(1)
        return docs[0].get("activity_log_id") if docs else None

    async def insert_execution(self, execution: TransitionExecution):
        await self.db.transition_executions.insert_one(execution.model_dump())

    async def update_execution_notification(
        self,
        execution_id: str,
        notification_sent: bool,
        notification_id: Optional[str]
    ):
        await self.db.transition_executions.update_one(
            {"execution_id": execution_id},
            {"$set": {"notification_sent": notification_sent, "notification_id": notification_id}}
        )

    async def list_executions(
        self,
        candidate_id: Optional[str] = None,
        rule_id: Optional[str] = None,
        limit: int = 50
    ) -> List[TransitionExecution]:
        query = {}
        if candidate_id:
            query["candidate_id"] = candidate_id
        if rule_id:
            query["rule_id"] = rule_id

        docs = await self.db.transition_executions.find(
            query,
            {"_id": 0}
        ).sort("executed_at", -1).limit(limit).to_list(limit)
        return [TransitionExecution(**doc) for doc in docs]
