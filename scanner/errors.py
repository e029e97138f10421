# scanner/errors.py
"""
Error taxonomy for the analyzer.

- RuleEvaluationError: a rule choked on oddly shaped input; skip that rule, keep going.
- AIUnavailable: no usable model, transport failure, or retries exhausted; no AI findings for that resource.
- AIThrottled: rate limiting outlasted the backoff budget (a kind of AIUnavailable).
- MalformedResponse: the model answered but no valid JSON of the expected shape was recoverable.
- UpstreamSynthFailure: no template at all; the only fatal error.
"""

from typing import Optional


class InsightsError(Exception):
    """Base class for analyzer errors."""


class RuleEvaluationError(InsightsError):
    def __init__(self, rule_name: str, resource_id: str, cause: Exception):
        super().__init__(f"Rule {rule_name} failed on {resource_id}: {cause}")
        self.rule_name = rule_name
        self.resource_id = resource_id
        self.cause = cause


class AIUnavailable(InsightsError):
    pass


class AIThrottled(AIUnavailable):
    def __init__(self, attempts: int, message: Optional[str] = None):
        super().__init__(message or f"Bedrock throttled the request; gave up after {attempts} attempts")
        self.attempts = attempts


class MalformedResponse(InsightsError):
    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class UpstreamSynthFailure(InsightsError):
    pass
