"""
AI Agents for Walletwise

DESIGN DECISION: Generated text is an optional layer on top of a
verdict the engine has already decided. The model is given the numbers
and asked to explain them; it is never asked whether something is
affordable.

CRITICAL BOUNDARIES:

AFFORDABILITY ADVISOR:
   - CAN: Explain the breakdown in plain language
   - CAN: Suggest practical next steps
   - CANNOT: Change can_afford or the confidence tier
   - CANNOT: Invent numbers that are not in the breakdown
   - MUST: Fall back to the deterministic advice when the model is
     unavailable or its answer cannot be parsed

The LLM is a NARRATOR, not a JUDGE.
"""

import json
from abc import ABC, abstractmethod
from typing import Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field, ValidationError
from tenacity import retry, stop_after_attempt, wait_exponential

from walletwise.audit import ActivityLogger
from walletwise.config import GeminiSettings, get_settings
from walletwise.errors import UnavailableError
from walletwise.models.affordability import AdvisoryText, AffordabilityVerdict
from walletwise.models.money import format_money
from walletwise.projection import advisory

logger = structlog.get_logger(__name__)

MAX_RECOMMENDATIONS = 6


class TextGenerator(ABC):
    """
    Prompt in, text out.

    Implementations raise UnavailableError when the backend cannot
    produce an answer.
    """

    @abstractmethod
    async def generate(self, prompt: str) -> str:
        pass


class GeminiTextGenerator(TextGenerator):
    """Text generation through Google Gemini."""

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _generate_with_retry(self, prompt: str) -> str:
        response = await self._model.generate_content_async(prompt)
        return response.text

    async def generate(self, prompt: str) -> str:
        try:
            return await self._generate_with_retry(prompt)
        except Exception as e:
            raise UnavailableError(f"Gemini request failed: {e}") from e


class AdvisoryResponse(BaseModel):
    """Shape we ask the model to answer in."""

    analysis: str = Field(..., min_length=1, max_length=2000)
    recommendations: list[str] = Field(default_factory=list)


class AffordabilityAdvisor:
    """
    Attaches advisory text to an affordability verdict.

    RESPONSIBILITIES:
    - Build a prompt from the verdict's numbers
    - Parse the model's JSON answer
    - Fall back to deterministic text on any failure

    Usage:
        advisor = AffordabilityAdvisor(GeminiTextGenerator())
        advice = await advisor.advise(verdict, description="New laptop")
    """

    def __init__(
        self,
        generator: Optional[TextGenerator] = None,
        currency_symbol: str = "₱",
        activity: Optional[ActivityLogger] = None,
    ):
        """
        Args:
            generator: Text generator; None means always use the fallback
            currency_symbol: Symbol used in prompts and fallback text
            activity: Activity logger for generator outages
        """
        self._generator = generator
        self._symbol = currency_symbol
        self._activity = activity or ActivityLogger()

    def fallback(self, verdict: AffordabilityVerdict) -> AdvisoryText:
        """The deterministic advice the engine already produced."""
        return AdvisoryText(
            analysis=verdict.analysis or advisory.summarize(verdict, self._symbol),
            recommendations=list(verdict.recommendations),
            source="fallback",
        )

    def build_prompt(
        self,
        verdict: AffordabilityVerdict,
        description: Optional[str] = None,
    ) -> str:
        b = verdict.breakdown
        money = lambda amount: format_money(amount, self._symbol)  # noqa: E731

        lines = [
            f"Expense: {description or 'unspecified'}",
            f"Category: {verdict.category or 'unspecified'}",
            f"Amount: {money(verdict.target_amount)}",
            f"Needed on: {verdict.target_date.isoformat()} ({b.days_until_target} days from today)",
            f"Current balance: {money(b.current_balance)}",
            f"Expected income until then: {money(b.projected_income)}",
            f"Expected routine spending: {money(b.routine_expenses)}",
            f"Planned expenses due by then: {money(b.upcoming_commitments)}",
            f"Reserved for later planned expenses: {money(b.later_commitments_weighted)}",
            f"Projected balance: {money(b.net_balance)}",
            f"Verdict: {'AFFORDABLE' if verdict.can_afford else 'NOT AFFORDABLE'}",
            f"Confidence: {verdict.confidence.value}",
        ]
        if verdict.risk_factors:
            lines.append("Risk factors: " + "; ".join(verdict.risk_factors))

        facts = "\n".join(lines)

        return f"""You are a personal finance assistant for a user in the Philippines.

A deterministic engine has already decided whether the user can afford an expense.
Explain its result in plain language and suggest practical next steps.

Facts:
{facts}

Important:
- Do NOT change or question the verdict or the confidence
- Use ONLY the numbers above; do not invent figures
- At most {MAX_RECOMMENDATIONS} short recommendations

Respond with ONLY a JSON object in this exact format:
{{"analysis": "2-3 sentence explanation", "recommendations": ["step one", "step two"]}}"""

    @staticmethod
    def parse(text: str) -> Optional[AdvisoryResponse]:
        """Extract the JSON object from a model answer, or None."""
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            return None
        try:
            return AdvisoryResponse.model_validate(json.loads(text[start:end]))
        except (json.JSONDecodeError, ValidationError):
            return None

    async def advise(
        self,
        verdict: AffordabilityVerdict,
        description: Optional[str] = None,
    ) -> AdvisoryText:
        """Generated advice for a verdict, or the fallback."""
        if self._generator is None:
            return self.fallback(verdict)

        try:
            text = await self._generator.generate(self.build_prompt(verdict, description))
        except UnavailableError as e:
            await self._activity.log_external_service_error("text_generation", e.message)
            return self.fallback(verdict)

        parsed = self.parse(text or "")
        if parsed is None:
            logger.warning("advisor_response_unparseable", length=len(text or ""))
            return self.fallback(verdict)

        recommendations = [r.strip() for r in parsed.recommendations if r and r.strip()]
        return AdvisoryText(
            analysis=parsed.analysis.strip(),
            recommendations=recommendations[:MAX_RECOMMENDATIONS] or list(verdict.recommendations),
            source="generated",
        )

    @staticmethod
    def apply(verdict: AffordabilityVerdict, advice: AdvisoryText) -> AffordabilityVerdict:
        """
        Copy of `verdict` carrying `advice`.

        Only the text fields change; the verdict and confidence are kept.
        """
        return verdict.model_copy(update={
            "analysis": advice.analysis,
            "recommendations": list(advice.recommendations),
            "advisory_source": advice.source,
        })
