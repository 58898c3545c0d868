"""Scoring model client.

Wraps one chat-completions call per signal. Returns a ScoreResult that is
either a decoded, qualified evaluation or a typed failure; it never raises for
model or context problems.
"""

import asyncio
import json
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone

import openai
from loguru import logger
from openai import AsyncOpenAI

from autopilot.config.constants import ENGINE, ErrorKind, ScoreFailure, ScoreOutcome
from autopilot.config.settings import Settings, get_settings
from autopilot.exceptions import BrokerError, ScoringError
from autopilot.ledger.records import Signal
from autopilot.scoring.breaker import ScoringCircuitBreaker
from autopilot.scoring.context import MarketContext, MarketContextBuilder
from autopilot.scoring.decoder import RESPONSE_SCHEMA, DecodedScore, DecodeError, decode_model_output
from autopilot.scoring.qualify import Qualification, qualify

SYSTEM_PROMPT = (
    "You grade intraday US equity trade setups. Score both directions from 0 to 10: "
    "longScore for taking the trade long and shortScore for taking it short, each with a "
    "one or two sentence summary. Set chosenDirection to the side you would take, or NONE "
    "when neither is clearly better. confidence is your certainty from 0 to 1. "
    "Respond with JSON only."
)


@dataclass
class ScoreResult:
    """Outcome of scoring one signal."""

    outcome: ScoreOutcome
    decoded: DecodedScore | None = None
    qualification: Qualification | None = None
    failure: ScoreFailure | None = None
    message: str | None = None
    raw_head: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == ScoreOutcome.SUCCESS

    @classmethod
    def failed(cls, failure: ScoreFailure, message: str, **kwargs) -> "ScoreResult":
        return cls(outcome=ScoreOutcome.FAILED, failure=failure, message=message, **kwargs)


def classify_error(e: Exception) -> ErrorKind:
    """Bucket a model call error for retry and breaker accounting."""
    if isinstance(e, openai.RateLimitError):
        return ErrorKind.RATE_LIMIT
    if isinstance(e, (openai.APITimeoutError, asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(e, openai.APIStatusError) and e.status_code == 429:
        return ErrorKind.RATE_LIMIT
    return ErrorKind.OTHER


class ScoringClient:
    """
    Scores signals with an LLM.

    Handles:
    - Market context from recent bars (refusing thin history)
    - Retries on rate limits and timeouts with capped backoff and jitter
    - Process-wide circuit breaker with a deterministic skip while open
    - Strict decoding with a fallback stage, then qualification
    """

    def __init__(
        self,
        breaker: ScoringCircuitBreaker,
        context_builder: MarketContextBuilder,
        client: AsyncOpenAI | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._breaker = breaker
        self._context_builder = context_builder
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            # Retries are handled here so they count against the breaker
            self._client = AsyncOpenAI(api_key=self._settings.openai_api_key, max_retries=0)
        return self._client

    def _backoff(self, attempt: int) -> float:
        base = self._settings.ai_scoring_retry_base_seconds * (2 ** attempt)
        capped = min(self._settings.ai_scoring_retry_cap_seconds, base)
        return capped * (1 + random.uniform(0, 0.3))

    def _messages(self, signal: Signal, context: MarketContext) -> list[dict[str, str]]:
        setup = {
            "ticker": signal.ticker,
            "side": signal.side.value if signal.side else None,
            "entryPrice": signal.entry_price,
            "stopPrice": signal.stop_price,
            "targetPrice": signal.target_price,
            "timeframe": signal.timeframe,
            "source": signal.source,
        }
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": json.dumps({"setup": setup, "market": context.to_dict()}),
            },
        ]

    async def _complete(self, messages: list[dict[str, str]], timeout: float) -> str:
        response = await self.client.chat.completions.create(
            model=self._settings.ai_model,
            messages=messages,
            temperature=0.2,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": "bidirectional_score", "strict": True, "schema": RESPONSE_SCHEMA},
            },
            timeout=timeout,
        )
        return response.choices[0].message.content or ""

    async def score(self, signal: Signal, timeout: float | None = None) -> ScoreResult:
        """
        Score one signal within a caller-supplied time budget.

        Args:
            signal: Signal to score
            timeout: Seconds available for the whole call, retries included
        """
        budget = timeout if timeout is not None else self._settings.ai_scoring_timeout_seconds
        deadline = time.monotonic() + budget

        if self._breaker.is_open():
            return ScoreResult(outcome=ScoreOutcome.SKIPPED, message="breaker_open")

        try:
            context = await asyncio.to_thread(
                self._context_builder.build, signal.ticker, datetime.now(timezone.utc)
            )
        except ScoringError as e:
            return ScoreResult.failed(e.failure, str(e))
        except BrokerError as e:
            return ScoreResult.failed(ScoreFailure.OTHER, f"context_unavailable: {e}")

        messages = self._messages(signal, context)
        max_attempts = self._settings.ai_scoring_retry_max + 1
        text = None
        attempt = 0
        for attempt in range(max_attempts):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return ScoreResult.failed(ScoreFailure.TIMEOUT, "model_timeout: budget exhausted", attempts=attempt)
            try:
                text = await asyncio.wait_for(self._complete(messages, remaining), timeout=remaining)
                break
            except Exception as e:
                kind = classify_error(e)
                if self._breaker.record_error(kind):
                    return ScoreResult(outcome=ScoreOutcome.SKIPPED, message="breaker_open", attempts=attempt + 1)
                if kind == ErrorKind.OTHER:
                    logger.warning(f"Scoring call failed for {signal.ticker}: {e}")
                    return ScoreResult.failed(ScoreFailure.OTHER, f"scoring_failed: {e}", attempts=attempt + 1)
                wait = self._backoff(attempt)
                if attempt + 1 >= max_attempts or time.monotonic() + wait >= deadline:
                    failure = ScoreFailure.TIMEOUT if kind == ErrorKind.TIMEOUT else ScoreFailure.OTHER
                    return ScoreResult.failed(failure, f"{kind.value}: {e}", attempts=attempt + 1)
                logger.info(
                    f"Scoring {signal.ticker} hit {kind.value}, retrying in {wait:.2f}s "
                    f"(attempt {attempt + 1}/{max_attempts})"
                )
                await asyncio.sleep(wait)

        raw_head = (text or "")[: ENGINE.RAW_HEAD_CHARS]
        try:
            decoded = decode_model_output(text)
        except DecodeError as e:
            return ScoreResult.failed(
                ScoreFailure.PARSE_FAILED, str(e), raw_head=raw_head, attempts=attempt + 1
            )

        qualification = qualify(decoded, signal.side, self._settings)
        return ScoreResult(
            outcome=ScoreOutcome.SUCCESS,
            decoded=decoded,
            qualification=qualification,
            raw_head=raw_head,
            attempts=attempt + 1,
        )
