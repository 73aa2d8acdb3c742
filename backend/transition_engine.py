"""
Stage Transition Engine - evaluates automated pipeline rules and moves candidates

Three entry modes share one evaluate -> execute pipeline:
  - by candidate: every enabled rule for the candidate's current stage
  - by rule: one enabled rule across every candidate in its from_stage
  - by stage: every enabled rule for a stage, each run in by-rule mode

Conditions are checked inside the store. Duplicate suppression is a
time-windowed lookup on the execution log, not a lock, so two racing
invocations inside the window can both pass the guard.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional

from backend.transition_errors import (
    CandidateNotFoundError,
    ConditionEvaluationError,
    RuleNotFoundError,
    StageUpdateError,
)
from backend.transition_models import (
    DEFAULT_DEDUP_WINDOW_SECONDS,
    DEFAULT_NOTIFICATION_TYPE,
    Candidate,
    EvaluationResult,
    TransitionExecution,
    TransitionOutcome,
    TransitionRule,
    execution_type_for,
    triggered_by_for,
)

logger = logging.getLogger(__name__)


class TransitionEngine:
    def __init__(self, store, dispatcher, dedup_window_seconds: int = DEFAULT_DEDUP_WINDOW_SECONDS):
        self.store = store
        self.dispatcher = dispatcher
        self.dedup_window = timedelta(seconds=dedup_window_seconds)
        self._pending_notifications = set()

    # ============ CONDITION EVALUATION ============

    async def evaluate_rule(
        self,
        candidate: Candidate,
        rule: TransitionRule,
        trigger_type: str,
        event_data: Optional[dict] = None
    ) -> EvaluationResult:
        """Ask the store whether the rule's conditions hold for the candidate"""
        logger.debug(
            f"Evaluating rule {rule.rule_id} for candidate {candidate.candidate_id} "
            f"(trigger={trigger_type}, event_data={bool(event_data)})"
        )
        try:
            result = await self.store.check_transition_conditions(candidate.candidate_id, rule.rule_id)
        except Exception as e:
            raise ConditionEvaluationError(f"Error checking conditions: {str(e)}") from e

        return EvaluationResult(
            should_transition=result.met,
            reason=result.error or result.reason,
            conditions_met=result.details
        )

    # ============ EXECUTION ============

    async def execute_transition(
        self,
        candidate: Candidate,
        rule: TransitionRule,
        evaluation: EvaluationResult,
        trigger_type: str
    ) -> TransitionOutcome:
        """Apply a satisfied rule: stage update, audit row, optional notification"""
        now = datetime.now(timezone.utc)

        recent = await self.store.find_recent_successful_execution(
            candidate.candidate_id,
            rule.from_stage,
            rule.to_stage,
            since=(now - self.dedup_window).isoformat()
        )
        if recent:
            logger.info(
                f"Skipping {rule.from_stage} -> {rule.to_stage} for candidate "
                f"{candidate.candidate_id}: already executed recently"
            )
            return TransitionOutcome(
                rule_id=rule.rule_id,
                rule_name=rule.rule_name,
                candidate_id=candidate.candidate_id,
                status="skipped",
                reason="Transition already executed recently",
                from_stage=rule.from_stage,
                to_stage=rule.to_stage
            )

        # Everything after the stage update is best effort
        try:
            await self.store.update_candidate_status(candidate.candidate_id, rule.to_stage, now.isoformat())
        except StageUpdateError:
            raise
        except Exception as e:
            raise StageUpdateError(f"Error updating candidate status: {str(e)}") from e

        activity_log_id = None
        try:
            activity_log_id = await self.store.find_latest_activity_log(
                candidate.candidate_id, rule.from_stage, rule.to_stage
            )
        except Exception as e:
            logger.warning(f"Activity log lookup failed for candidate {candidate.candidate_id}: {str(e)}")

        execution = TransitionExecution(
            execution_id=f"exec_{uuid.uuid4().hex[:12]}",
            candidate_id=candidate.candidate_id,
            rule_id=rule.rule_id,
            from_stage=rule.from_stage,
            to_stage=rule.to_stage,
            execution_type=execution_type_for(trigger_type),
            triggered_by=triggered_by_for(trigger_type),
            conditions_met=evaluation.conditions_met,
            execution_result="success",
            activity_log_id=activity_log_id,
            notification_sent=False,
            executed_at=now.isoformat()
        )
        execution_id = execution.execution_id
        try:
            await self.store.insert_execution(execution)
        except Exception as e:
            logger.error(f"Error logging transition execution for candidate {candidate.candidate_id}: {str(e)}")
            execution_id = None

        logger.info(
            f"Candidate {candidate.candidate_id} moved {rule.from_stage} -> {rule.to_stage} "
            f"by rule {rule.rule_id}"
        )

        notification = "not_requested"
        if rule.auto_send_notification:
            self._schedule_notification(candidate.candidate_id, rule, execution_id)
            notification = "queued"

        return TransitionOutcome(
            rule_id=rule.rule_id,
            rule_name=rule.rule_name,
            candidate_id=candidate.candidate_id,
            status="success",
            from_stage=rule.from_stage,
            to_stage=rule.to_stage,
            notification=notification,
            execution_id=execution_id
        )

    # ============ NOTIFICATIONS ============

    def _schedule_notification(self, candidate_id: str, rule: TransitionRule, execution_id: Optional[str]):
        task = asyncio.create_task(self._send_notification(candidate_id, rule, execution_id))
        self._pending_notifications.add(task)
        task.add_done_callback(self._pending_notifications.discard)

    async def _send_notification(self, candidate_id: str, rule: TransitionRule, execution_id: Optional[str]):
        notification_sent = False
        notification_id = None
        try:
            notification_id = await self.dispatcher.dispatch(
                candidate_id=candidate_id,
                notification_type=rule.notification_template or DEFAULT_NOTIFICATION_TYPE,
                old_stage=rule.from_stage,
                new_stage=rule.to_stage
            )
            notification_sent = True
        except Exception as e:
            logger.error(f"Error sending notification for candidate {candidate_id}: {str(e)}")

        if execution_id is None:
            return
        try:
            await self.store.update_execution_notification(execution_id, notification_sent, notification_id)
        except Exception as e:
            logger.error(f"Error backfilling notification status on {execution_id}: {str(e)}")

    @property
    def pending_notifications(self) -> int:
        return len(self._pending_notifications)

    async def drain_notifications(self):
        """Wait for every in-flight notification and its audit backfill"""
        while self._pending_notifications:
            await asyncio.gather(*list(self._pending_notifications))

    # ============ ORCHESTRATION ============

    async def evaluate_candidate_transitions(
        self,
        candidate_id: str,
        trigger_type: str = "event",
        event_data: Optional[dict] = None
    ) -> dict:
        """Evaluate all applicable rules for a specific candidate"""
        candidate = await self.store.get_candidate(candidate_id)
        if not candidate:
            raise CandidateNotFoundError(candidate_id)

        rules = await self.store.list_enabled_rules(candidate.status)
        if not rules:
            return {
                "success": True,
                "message": "No applicable rules found for candidate's current stage",
                "candidateId": candidate_id,
                "currentStage": candidate.status,
                "transitions": [],
            }

        # Same snapshot for every rule: a second satisfied rule still executes
        transitions = []
        for rule in rules:
            try:
                evaluation = await self.evaluate_rule(candidate, rule, trigger_type, event_data)
                if evaluation.should_transition:
                    outcome = await self.execute_transition(candidate, rule, evaluation, trigger_type)
                else:
                    outcome = TransitionOutcome(
                        rule_id=rule.rule_id,
                        rule_name=rule.rule_name,
                        candidate_id=candidate_id,
                        status="conditions_not_met",
                        reason=evaluation.reason
                    )
            except Exception as e:
                logger.error(f"Error evaluating rule {rule.rule_id}: {str(e)}")
                outcome = TransitionOutcome(
                    rule_id=rule.rule_id,
                    rule_name=rule.rule_name,
                    candidate_id=candidate_id,
                    status="error",
                    error=str(e)
                )
            transitions.append(outcome.to_response())

        return {
            "success": True,
            "candidateId": candidate_id,
            "currentStage": candidate.status,
            "transitions": transitions,
        }

    async def evaluate_rule_for_all_candidates(
        self,
        rule_id: str,
        trigger_type: str = "scheduled",
        event_data: Optional[dict] = None
    ) -> dict:
        """Evaluate a specific rule for all candidates in its from_stage"""
        rule = await self.store.get_enabled_rule(rule_id)
        if not rule:
            raise RuleNotFoundError(rule_id)
        return await self._run_rule(rule, trigger_type, event_data)

    async def _run_rule(self, rule: TransitionRule, trigger_type: str, event_data: Optional[dict]) -> dict:
        docs = await self.store.list_candidates_in_stage(rule.from_stage)

        transitions = []
        for doc in docs:
            try:
                candidate = Candidate(**doc)
                evaluation = await self.evaluate_rule(candidate, rule, trigger_type, event_data)
                if evaluation.should_transition:
                    outcome = await self.execute_transition(candidate, rule, evaluation, trigger_type)
                    transitions.append(outcome.to_response())
            except Exception as e:
                logger.error(
                    f"Error processing candidate {doc.get('candidate_id')} for rule {rule.rule_id}: {str(e)}"
                )

        return {
            "success": True,
            "ruleId": rule.rule_id,
            "ruleName": rule.rule_name,
            "candidatesProcessed": len(docs),
            "transitions": transitions,
        }

    async def evaluate_stage_transitions(
        self,
        from_stage: str,
        trigger_type: str = "scheduled",
        event_data: Optional[dict] = None
    ) -> dict:
        """Run every enabled rule for a stage in by-rule mode"""
        rules = await self.store.list_enabled_rules(from_stage)

        transitions = []
        for rule in rules:
            result = await self._run_rule(rule, trigger_type, event_data)
            transitions.extend(result["transitions"])

        return {
            "success": True,
            "fromStage": from_stage,
            "rulesEvaluated": len(rules),
            "transitions": transitions,
        }
