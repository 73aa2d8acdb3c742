"""
Stage Transitions - Backend Models and Validation
Rules, candidates and the audit trail of automated pipeline moves
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Optional, Literal

TriggerType = Literal["event", "scheduled", "manual"]
ExecutionResult = Literal["success", "error", "skipped"]
OutcomeStatus = Literal["success", "skipped", "conditions_not_met", "error"]

DEFAULT_NOTIFICATION_TYPE = "stage_change"
DEFAULT_DEDUP_WINDOW_SECONDS = 60

# ============ REQUEST MODELS ============

class TransitionRequest(BaseModel):
    """Evaluate request: exactly one of candidateId, ruleId or fromStage"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    candidate_id: Optional[str] = None
    rule_id: Optional[str] = None
    from_stage: Optional[str] = None
    trigger_type: Optional[TriggerType] = None
    event_data: Optional[dict] = None

    @model_validator(mode="after")
    def validate_single_target(self):
        provided = [v for v in (self.candidate_id, self.rule_id, self.from_stage) if v]
        if not provided:
            raise ValueError("Please provide candidateId, ruleId, or fromStage")
        if len(provided) > 1:
            raise ValueError("Provide only one of candidateId, ruleId, or fromStage")
        return self

# ============ STORED RECORDS ============

class TransitionRule(BaseModel):
    """Automated transition rule, maintained by administrators"""
    rule_id: str
    rule_name: str
    from_stage: str
    to_stage: str
    enabled: bool = True
    # MongoDB filter document evaluated against the candidate record
    conditions: dict = Field(default_factory=dict)
    auto_send_notification: bool = False
    notification_template: Optional[str] = None
    require_approval: bool = False


class Candidate(BaseModel):
    candidate_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    status: str
    job_id: Optional[str] = None
    updated_at: Optional[str] = None


class TransitionExecution(BaseModel):
    """Audit row for one transition attempt"""
    execution_id: str
    candidate_id: str
    rule_id: str
    from_stage: str
    to_stage: str
    execution_type: Literal["automatic", "manual"]
    triggered_by: Literal["system", "user"]
    conditions_met: Optional[Any] = None
    execution_result: ExecutionResult
    activity_log_id: Optional[str] = None
    notification_sent: bool = False
    notification_id: Optional[str] = None
    executed_at: str

# ============ EVALUATION RESULTS ============

class ConditionResult(BaseModel):
    """Result of the store-side condition check"""
    met: bool
    error: Optional[str] = None
    reason: Optional[str] = None
    details: Optional[Any] = None


class EvaluationResult(BaseModel):
    should_transition: bool
    reason: Optional[str] = None
    conditions_met: Optional[Any] = None


class TransitionOutcome(BaseModel):
    """Per-pair entry of the transitions list returned to callers"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rule_id: str
    rule_name: str
    candidate_id: Optional[str] = None
    status: OutcomeStatus
    reason: Optional[str] = None
    error: Optional[str] = None
    from_stage: Optional[str] = None
    to_stage: Optional[str] = None
    notification: Optional[Literal["queued", "not_requested"]] = None
    execution_id: Optional[str] = None

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

# ============ HELPERS ============

def execution_type_for(trigger_type: str) -> str:
    return "manual" if trigger_type == "manual" else "automatic"


def triggered_by_for(trigger_type: str) -> str:
    return "user" if trigger_type == "manual" else "system"
