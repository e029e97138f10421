# scanner/bedrock.py
"""
Amazon Bedrock adapter.

- select_model lists foundation models available to the account and picks one.
- generate sends one prompt through the Converse API and returns text plus token counts.
- Throttling is retried with exponential backoff; everything else fails fast as AIUnavailable.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from config import (
    BASE_DELAY_SECONDS,
    MAX_ATTEMPTS,
    MAX_OUTPUT_TOKENS,
    PREFERRED_MODELS,
    TEMPERATURE,
    TOP_P,
)
from scanner.errors import AIThrottled, AIUnavailable

logger = logging.getLogger("cdk_insights.ai")

THROTTLING_CODES = ("ThrottlingException", "TooManyRequestsException", "Throttling")

# Retries belong to generate(); the SDK must not retry underneath it
NO_SDK_RETRIES = Config(retries={"total_max_attempts": 1, "mode": "standard"})


@dataclass(frozen=True)
class AIResponse:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


def is_throttling_error(error: ClientError) -> bool:
    """
    True for Bedrock rate-limit responses (error code or HTTP 429).
    """
    code = error.response.get("Error", {}).get("Code", "")
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in THROTTLING_CODES or status == 429


def backoff_delays(max_attempts: int, base_delay: float) -> List[float]:
    """
    Delays slept between attempts: base, 2*base, 4*base, ... (max_attempts - 1 of them).
    """
    return [base_delay * (2 ** n) for n in range(max(max_attempts - 1, 0))]


class BedrockClient:
    """
    Wraps the bedrock (control plane) and bedrock-runtime clients of a boto3 Session.

    Clients may be injected directly, which the tests use.
    """

    def __init__(self, session=None, runtime_client=None, control_client=None,
                 max_attempts: int = MAX_ATTEMPTS, base_delay: float = BASE_DELAY_SECONDS,
                 max_tokens: int = MAX_OUTPUT_TOKENS, temperature: float = TEMPERATURE,
                 top_p: float = TOP_P, sleep: Callable[[float], None] = time.sleep):
        if runtime_client is None and session is None:
            raise ValueError("BedrockClient needs a boto3 Session or explicit clients")
        self._runtime = runtime_client or session.client("bedrock-runtime", config=NO_SDK_RETRIES)
        if control_client is None and session is not None:
            control_client = session.client("bedrock", config=NO_SDK_RETRIES)
        self._control = control_client
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self._sleep = sleep

    def available_models(self) -> List[str]:
        if self._control is None:
            raise AIUnavailable("No Bedrock control-plane client configured")
        try:
            resp = self._control.list_foundation_models()
        except (ClientError, BotoCoreError) as e:
            raise AIUnavailable(f"Could not list Bedrock models: {e}") from e
        return [m["modelId"] for m in resp.get("modelSummaries", []) if m.get("modelId")]

    def select_model(self, preferred: Optional[str] = None,
                     fallbacks: Sequence[str] = PREFERRED_MODELS) -> str:
        """
        Return preferred if the account can use it, otherwise the first available fallback.
        Raises AIUnavailable when nothing usable is found.
        """
        available = set(self.available_models())
        if preferred and preferred in available:
            logger.info("Using requested Bedrock model %s", preferred)
            return preferred
        if preferred:
            logger.warning("Requested model %s is not available; trying fallbacks", preferred)
        for model_id in fallbacks:
            if model_id in available:
                logger.info("Using Bedrock model %s", model_id)
                return model_id
        raise AIUnavailable("No usable Bedrock model available to this account")

    def _converse(self, prompt: str, model_id: str) -> AIResponse:
        resp = self._runtime.converse(
            modelId=model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig={
                "maxTokens": self.max_tokens,
                "temperature": self.temperature,
                "topP": self.top_p,
            },
        )
        content = resp.get("output", {}).get("message", {}).get("content", []) or []
        text = "".join(block.get("text", "") for block in content if isinstance(block, dict))
        usage = resp.get("usage", {}) or {}
        return AIResponse(
            text=text,
            input_tokens=int(usage.get("inputTokens", 0) or 0),
            output_tokens=int(usage.get("outputTokens", 0) or 0),
        )

    def generate(self, prompt: str, model_id: str) -> AIResponse:
        """
        Send prompt to model_id. Throttled calls are retried up to max_attempts in total,
        sleeping base_delay, 2*base_delay, ... in between.
        """
        delays = backoff_delays(self.max_attempts, self.base_delay)
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._converse(prompt, model_id)
            except ClientError as e:
                if not is_throttling_error(e):
                    raise AIUnavailable(f"Bedrock request failed: {e}") from e
                if attempt == self.max_attempts:
                    raise AIThrottled(attempt) from e
                delay = delays[attempt - 1]
                logger.warning("Throttled by Bedrock (attempt %d/%d). Retrying in %.1fs",
                               attempt, self.max_attempts, delay)
                self._sleep(delay)
            except BotoCoreError as e:
                raise AIUnavailable(f"Bedrock transport error: {e}") from e
        raise AIThrottled(self.max_attempts)
