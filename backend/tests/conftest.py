"""
Shared fixtures: in-memory transition store and recording notification dispatcher
"""
import os

# server.py reads these at import time; the Motor client connects lazily
os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "stage_transitions_test")

import pytest

from backend.transition_engine import TransitionEngine
from backend.transition_errors import NotificationError, StageUpdateError
from backend.transition_models import (
    Candidate,
    ConditionResult,
    TransitionExecution,
    TransitionRule,
)


class InMemoryTransitionStore:
    """Stand-in for TransitionStore; conditions are plain field equality"""

    def __init__(self):
        self.candidates = {}
        self.rules = []
        self.executions = []
        self.activity_logs = []
        self.condition_checks = []
        self.failing_candidates = set()
        self.failing_rules = set()
        self.fail_status_update = False
        self.fail_execution_insert = False

    def add_candidate(self, candidate_id, status="hr", **fields):
        doc = {
            "candidate_id": candidate_id,
            "name": fields.pop("name", f"Candidate {candidate_id}"),
            "email": fields.pop("email", f"{candidate_id}@example.com"),
            "status": status,
            "job_id": fields.pop("job_id", "job_test0001"),
            "updated_at": "2025-01-01T00:00:00+00:00",
        }
        doc.update(fields)
        self.candidates[candidate_id] = doc
        return doc

    def add_rule(self, rule_id, from_stage="hr", to_stage="written_test", **fields):
        doc = {
            "rule_id": rule_id,
            "rule_name": fields.pop("rule_name", f"Rule {rule_id}"),
            "from_stage": from_stage,
            "to_stage": to_stage,
            "enabled": fields.pop("enabled", True),
            "conditions": fields.pop("conditions", {}),
            "auto_send_notification": fields.pop("auto_send_notification", False),
            "notification_template": fields.pop("notification_template", None),
            "require_approval": fields.pop("require_approval", False),
        }
        doc.update(fields)
        self.rules.append(doc)
        return doc

    def status_of(self, candidate_id):
        return self.candidates[candidate_id]["status"]

    async def get_candidate(self, candidate_id):
        doc = self.candidates.get(candidate_id)
        return Candidate(**doc) if doc else None

    async def list_candidates_in_stage(self, stage):
        return [dict(doc) for doc in self.candidates.values() if doc["status"] == stage]

    async def update_candidate_status(self, candidate_id, new_status, updated_at):
        if self.fail_status_update:
            raise RuntimeError("write concern timeout")
        if candidate_id not in self.candidates:
            raise StageUpdateError(f"Candidate {candidate_id} disappeared before stage update")
        self.candidates[candidate_id]["status"] = new_status
        self.candidates[candidate_id]["updated_at"] = updated_at

    async def get_enabled_rule(self, rule_id):
        for doc in self.rules:
            if doc["rule_id"] == rule_id and doc["enabled"]:
                return TransitionRule(**doc)
        return None

    async def list_enabled_rules(self, from_stage):
        return [
            TransitionRule(**doc) for doc in self.rules
            if doc["from_stage"] == from_stage and doc["enabled"]
        ]

    async def list_enabled_stages(self):
        return sorted({doc["from_stage"] for doc in self.rules if doc["enabled"]})

    async def check_transition_conditions(self, candidate_id, rule_id):
        self.condition_checks.append((candidate_id, rule_id))
        if candidate_id in self.failing_candidates:
            raise RuntimeError(f"lookup failed for {candidate_id}")
        if rule_id in self.failing_rules:
            raise ValueError("unknown operator: $near_deadline")

        rule = next((doc for doc in self.rules if doc["rule_id"] == rule_id), None)
        if rule is None:
            return ConditionResult(met=False, error="Rule not found")

        candidate = self.candidates.get(candidate_id, {})
        conditions = rule["conditions"] or {}
        details = {"rule_id": rule_id, "condition_fields": sorted(conditions.keys())}
        if all(candidate.get(field) == value for field, value in conditions.items()):
            return ConditionResult(met=True, details=details)
        return ConditionResult(
            met=False,
            reason="Candidate does not satisfy rule conditions",
            details=details
        )

    async def find_recent_successful_execution(self, candidate_id, from_stage, to_stage, since):
        for row in self.executions:
            if (row["candidate_id"] == candidate_id
                    and row["from_stage"] == from_stage
                    and row["to_stage"] == to_stage
                    and row["execution_result"] == "success"
                    and row["executed_at"] >= since):
                return {"execution_id": row["execution_id"]}
        return None

    async def find_latest_activity_log(self, candidate_id, old_stage, new_stage):
        matches = [
            log for log in self.activity_logs
            if log["candidate_id"] == candidate_id
            and log["old_stage"] == old_stage
            and log["new_stage"] == new_stage
        ]
        if not matches:
            return None
        return max(matches, key=lambda log: log["created_at"])["activity_log_id"]

    async def insert_execution(self, execution):
        if self.fail_execution_insert:
            raise RuntimeError("transition_executions unavailable")
        self.executions.append(execution.model_dump())

    async def update_execution_notification(self, execution_id, notification_sent, notification_id):
        for row in self.executions:
            if row["execution_id"] == execution_id:
                row["notification_sent"] = notification_sent
                row["notification_id"] = notification_id

    async def list_executions(self, candidate_id=None, rule_id=None, limit=50):
        rows = [
            row for row in self.executions
            if (candidate_id is None or row["candidate_id"] == candidate_id)
            and (rule_id is None or row["rule_id"] == rule_id)
        ]
        rows.sort(key=lambda row: row["executed_at"], reverse=True)
        return [TransitionExecution(**row) for row in rows[:limit]]


class RecordingDispatcher:
    def __init__(self):
        self.calls = []
        self.fail = False

    async def dispatch(self, candidate_id, notification_type, old_stage, new_stage):
        self.calls.append({
            "candidate_id": candidate_id,
            "type": notification_type,
            "old_stage": old_stage,
            "new_stage": new_stage,
        })
        if self.fail:
            raise NotificationError("Email delivery failed: relay unavailable")
        return f"notif_{len(self.calls):012d}"


@pytest.fixture
def store():
    return InMemoryTransitionStore()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def engine(store, dispatcher):
    return TransitionEngine(store=store, dispatcher=dispatcher)
