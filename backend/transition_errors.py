"""
Stage Transition Errors - exceptions raised by the transition engine
"""


class TransitionError(Exception):
    """Base class for stage transition failures"""


class CandidateNotFoundError(TransitionError):
    def __init__(self, candidate_id: str):
        super().__init__(f"Candidate not found: {candidate_id}")
        self.candidate_id = candidate_id


class RuleNotFoundError(TransitionError):
    def __init__(self, rule_id: str):
        super().__init__(f"Rule not found or disabled: {rule_id}")
        self.rule_id = rule_id


class ConditionEvaluationError(TransitionError):
    """The store could not evaluate a rule's conditions"""


class StageUpdateError(TransitionError):
    """Writing the candidate's new stage failed"""


class NotificationError(TransitionError):
    """Notification dispatch failed"""
