"""
Meeting qualification scorer
Scores a call transcript against a campaign's own criteria in a single model request
"""

import json
import math
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

import openai
import structlog
from openai import AsyncOpenAI

from ..config import Settings
from ..errors import ScoringUnavailableError, ValidationError
from ..utils.helpers import retry_async, strip_code_fences

logger = structlog.get_logger("meetflow.analysis.qualification_scorer")

DEFAULT_THRESHOLD = 70
CRITERION_MET_SCORE = 70
DEFAULT_CONFIDENCE = 0.8
READINESS_VALUES = ("ready", "not_ready", "needs_follow_up")

RETRYABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

SYSTEM_PROMPT = (
    "You are an expert B2B sales qualification analyst. Analyze sales call "
    "transcripts and score qualification based on the specific criteria provided "
    "by the company. Return a JSON object with scores for each criterion and "
    "overall analysis."
)


@dataclass
class QualificationScore:
    """Aggregated qualification result for one transcript"""
    overall_score: float
    criteria_scores: Dict[str, float]
    is_qualified: bool
    threshold: float
    confidence: float
    reasoning: str
    criteria_met: List[str] = field(default_factory=list)
    criteria_unmet: List[str] = field(default_factory=list)
    key_quotes: List[str] = field(default_factory=list)
    objections: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)
    meeting_readiness: str = "not_ready"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_criteria(value: Any) -> List[str]:
    """
    Normalize campaign meeting criteria.

    Lists keep their non-blank strings; strings are decoded as a JSON list,
    and a string that is not JSON is treated as a single criterion.
    """
    if isinstance(value, list):
        return [c for c in value if isinstance(c, str) and c.strip()]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [value] if value.strip() else []
        if isinstance(parsed, list):
            return [c for c in parsed if isinstance(c, str) and c.strip()]
        return []
    return []


def resolve_threshold(override: Optional[float], campaign_threshold: Optional[float]) -> float:
    if override is not None:
        return override
    if campaign_threshold is not None:
        return campaign_threshold
    return DEFAULT_THRESHOLD


def normalize_score(value: Any) -> float:
    """Clamp a model score to 0-100; absent or non-numeric scores count as 0"""
    if isinstance(value, bool):
        return 0.0
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(score):
        return 0.0
    return max(0.0, min(100.0, score))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def raw_criterion_score(result: Dict[str, Any], index: int, criterion: str) -> Any:
    """
    Find the model's score for one criterion.

    The indexed key comes first, then a criteria_scores object keyed by the
    criterion text, then a top-level key named after the criterion.
    """
    value = result.get(f"criterion_{index}_score")
    if value is not None:
        return value
    nested = result.get("criteria_scores")
    if isinstance(nested, dict) and nested.get(criterion) is not None:
        return nested[criterion]
    return result.get(criterion)


def aggregate(result: Dict[str, Any], criteria: List[str], threshold: float) -> QualificationScore:
    """Build the qualification result from raw model output"""
    criteria_scores: Dict[str, float] = {}
    criteria_met: List[str] = []
    criteria_unmet: List[str] = []
    total = 0.0

    for index, criterion in enumerate(criteria):
        score = normalize_score(raw_criterion_score(result, index, criterion))
        criteria_scores[criterion] = score
        total += score
        if score >= CRITERION_MET_SCORE:
            criteria_met.append(criterion)
        else:
            criteria_unmet.append(criterion)

    overall = total / len(criteria)
    is_qualified = overall >= threshold

    confidence = result.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = DEFAULT_CONFIDENCE
    confidence = max(0.0, min(1.0, float(confidence)))

    readiness = result.get("meeting_readiness")
    if readiness not in READINESS_VALUES:
        readiness = "ready" if is_qualified else "not_ready"

    reasoning = result.get("reasoning")

    return QualificationScore(
        overall_score=overall,
        criteria_scores=criteria_scores,
        is_qualified=is_qualified,
        threshold=threshold,
        confidence=confidence,
        reasoning=reasoning if isinstance(reasoning, str) else "",
        criteria_met=criteria_met,
        criteria_unmet=criteria_unmet,
        key_quotes=_string_list(result.get("key_quotes")),
        objections=_string_list(result.get("objections")),
        next_steps=_string_list(result.get("next_steps")),
        meeting_readiness=readiness,
    )


def build_prompt(transcript: str, criteria: List[str], icp_description: Optional[str] = None) -> str:
    numbered = "\n".join(f"{i + 1}. {c}" for i, c in enumerate(criteria))
    keys = "\n  ".join(f'"criterion_{i}_score": <0-100>, // Score for: {c}' for i, c in enumerate(criteria))
    guidelines = "\n".join(
        f"- {c}: Score 0-100 based on whether this criterion was clearly met in the "
        f"conversation. Use criterion_{i}_score as the key."
        for i, c in enumerate(criteria)
    )

    return f"""Analyze this sales call transcript and provide a qualification score based on the company's specific criteria.

Campaign ICP: {icp_description or "Not specified"}

Company's Qualification Criteria (score each one 0-100):
{numbered}

Call Transcript:
{transcript}

Return a JSON object with this structure:
{{
  {keys}
  "confidence": <0-1>,
  "reasoning": "<explanation of how each criterion was evaluated>",
  "key_quotes": ["<quote1>", "<quote2>"],
  "objections": ["<objection1>", "<objection2>"],
  "next_steps": ["<step1>", "<step2>"],
  "meeting_readiness": "<ready|not_ready|needs_follow_up>"
}}

Scoring Guidelines:
{guidelines}

For each criterion:
- Score 80-100: Criterion was clearly and explicitly met
- Score 50-79: Criterion was partially met or implied
- Score 20-49: Criterion was mentioned but not confirmed
- Score 0-19: Criterion was not addressed or explicitly not met

Be strict but fair. Only score highly if criteria are clearly met with evidence from the transcript."""


class QualificationScorer:
    """OpenAI-backed qualification gateway"""

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        self.settings = settings
        self.model = settings.openai_model
        if client is None and settings.openai_api_key:
            # Retries are driven by retry_async so the backoff stays capped
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.scoring_timeout_seconds,
                max_retries=0,
            )
        self.client = client

    async def score(
        self,
        transcript: str,
        criteria: List[str],
        threshold: Optional[float] = None,
        icp_description: Optional[str] = None
    ) -> QualificationScore:
        """
        Score a transcript against campaign criteria.

        Raises ValidationError for empty input and ScoringUnavailableError
        when the model cannot be reached or its output cannot be parsed.
        A partial response never raises: unscored criteria count as 0.
        """
        if not transcript or not transcript.strip():
            raise ValidationError("Transcript is empty", stage="score")
        if not criteria:
            raise ValidationError("No qualification criteria found in campaign", stage="score")
        if self.client is None:
            raise ScoringUnavailableError("OpenAI client not configured", stage="score")

        threshold = DEFAULT_THRESHOLD if threshold is None else threshold
        prompt = build_prompt(transcript, criteria, icp_description)

        logger.info(
            "Requesting qualification score",
            model=self.model,
            criteria=len(criteria),
            transcript_length=len(transcript)
        )

        try:
            content = await retry_async(
                lambda: self._complete(prompt),
                max_retries=self.settings.http_max_retries,
                delay=self.settings.http_retry_delay_seconds,
                backoff_factor=2.0,
                exceptions=RETRYABLE_ERRORS
            )
        except openai.OpenAIError as e:
            raise ScoringUnavailableError(
                f"Scoring model request failed: {e}",
                stage="score",
                model=self.model,
            ) from e

        try:
            result = json.loads(strip_code_fences(content or ""))
        except json.JSONDecodeError as e:
            raise ScoringUnavailableError(
                "Scoring model returned malformed JSON",
                stage="score",
                model=self.model,
            ) from e
        if not isinstance(result, dict):
            raise ScoringUnavailableError(
                "Scoring model returned a non-object response",
                stage="score",
                model=self.model,
            )

        score = aggregate(result, criteria, threshold)
        logger.info(
            "Qualification score computed",
            overall_score=round(score.overall_score, 2),
            is_qualified=score.is_qualified,
            threshold=threshold,
            criteria_met=len(score.criteria_met)
        )
        return score

    async def _complete(self, prompt: str) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt}
            ],
            temperature=0.3,
            response_format={"type": "json_object"}
        )
        return response.choices[0].message.content
