"""
AI Agents for Pocket Ledger

DESIGN DECISION: The language model sits OUTSIDE the ledger.
Every agent here produces data for a human to confirm; none of them can
write to the store.

CRITICAL BOUNDARIES:

1. INTERPRETATION AGENT:
   - CAN: Turn free text into a TransactionProposal
   - CAN: Match wallets/categories against the ones it is shown
   - CANNOT: Commit anything (the user confirms first)
   - CANNOT: Reference ids it was not shown

2. TRANSCRIPTION AGENT:
   - CAN: Turn a voice note into text
   - CANNOT: Interpret it (that is the interpretation agent's job)

3. REVIEW AGENT:
   - CAN: Comment on the figures of a period
   - CANNOT: Invent figures; it only sees what the aggregator returned
   - MUST: Say there is nothing to review when the period is empty

The LLM is a TRANSLATOR, not an ORACLE.
Model calls are retried (tenacity); a failure that survives the retries
becomes a CollaboratorError, before any ledger write.
"""

import json
import math
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import google.generativeai as genai
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from pocket_ledger.config import GeminiSettings, get_settings
from pocket_ledger.errors import CollaboratorError, ValidationError
from pocket_ledger.models.ledger import (
    Category,
    TransactionRow,
    TransactionType,
    Wallet,
)
from pocket_ledger.models.proposal import EntityRef, TransactionProposal
from pocket_ledger.models.stats import StatsReport


# Defaults for fields the model leaves out; they match the starter data
FALLBACK_CATEGORY_NAME = "Sin categoría"
FALLBACK_CATEGORY_EMOJI = "📦"
FALLBACK_WALLET_NAME = "Efectivo"
FALLBACK_WALLET_EMOJI = "💵"
FALLBACK_CONFIDENCE = 0.8

EMPTY_PERIOD_REVIEW = (
    "There are no transactions recorded in this period to analyse. "
    "Start recording your movements!"
)
REVIEW_UNAVAILABLE = "Could not generate the analysis."

# Audio container types the transcriber accepts; anything else is sent as webm
AUDIO_MIME_TYPES = {
    "audio/webm": "audio/webm",
    "audio/mp4": "audio/mp4",
    "audio/ogg": "audio/ogg",
    "audio/wav": "audio/wav",
    "audio/mpeg": "audio/mpeg",
    "audio/mp3": "audio/mpeg",
    "video/webm": "audio/webm",
    "video/mp4": "audio/mp4",
}


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Strip parameters such as ';codecs=opus' and map to a supported type."""
    base = (mime_type or "").split(";")[0].strip().lower()
    return AUDIO_MIME_TYPES.get(base, "audio/webm")


def extract_json(text: str) -> dict:
    """Find the JSON object in a model answer (models like to wrap it)."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise ValueError("No JSON object in response")
    data = json.loads(text[start:end])
    if not isinstance(data, dict):
        raise ValueError("Response JSON is not an object")
    return data


class GeminiAgent:
    """
    Base for agents backed by a Gemini model.

    A ``model`` can be injected (anything with ``generate_content_async``);
    otherwise one is built from GeminiSettings.
    """

    service_name = "gemini"
    response_mime_type: Optional[str] = None

    def __init__(
        self,
        model: Any = None,
        settings: Optional[GeminiSettings] = None,
    ):
        self._settings = settings or get_settings().gemini
        self._model = model or self._build_model()

    def _temperature(self) -> float:
        return 0.2

    def _build_model(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        generation_config = {
            "temperature": self._temperature(),
            "max_output_tokens": self._settings.max_tokens,
        }
        if self.response_mime_type:
            generation_config["response_mime_type"] = self.response_mime_type
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config=generation_config,
        )

    async def _generate(self, contents: Any) -> str:
        """Call the model with retries and return its stripped text."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.retry_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._model.generate_content_async(contents)
                    return (response.text or "").strip()
        except Exception as e:
            raise CollaboratorError(
                self.service_name,
                f"{self.service_name} request failed: {e}",
            ) from e


class InterpretationAgent(GeminiAgent):
    """
    Turns a free-text description into a transaction proposal.

    BOUNDARIES:
    - NEVER persists data
    - References are checked against the wallets/categories it was shown
    - Missing fields get fixed defaults, never guesses
    """

    service_name = "interpreter"
    response_mime_type = "application/json"

    def __init__(
        self,
        model: Any = None,
        settings: Optional[GeminiSettings] = None,
        default_currency: str = "COP",
    ):
        self._default_currency = default_currency
        super().__init__(model=model, settings=settings)

    def _temperature(self) -> float:
        return self._settings.interpret_temperature

    def _build_prompt(
        self,
        text: str,
        wallets: list[Wallet],
        categories: list[Category],
    ) -> str:
        wallets_context = "\n".join(
            f'- ID:{w.id} "{w.name}" {w.emoji}' for w in wallets
        ) or "(none)"
        categories_context = "\n".join(
            f'- ID:{c.id} "{c.name}" {c.emoji} ({c.type.value})' for c in categories
        ) or "(none)"

        return f"""You are a personal finance assistant. Interpret the user's message and extract one financial transaction.

The user says: "{text}"

EXISTING WALLETS:
{wallets_context}

EXISTING CATEGORIES:
{categories_context}

Respond with ONLY a JSON object in this exact format:
{{
  "type": "income" | "expense" | "transfer",
  "amount": number,
  "currency": string,
  "description": string,
  "category": {{"name": string, "emoji": string, "exists": boolean, "id": number | null}},
  "wallet": {{"name": string, "emoji": string, "exists": boolean, "id": number | null}},
  "walletDestination": {{"name": string, "emoji": string, "exists": boolean, "id": number | null}} | null,
  "confidence": number,
  "clarification": string | null
}}

Rules:
- A purchase or payment is "expense", money received is "income", money moved between wallets is "transfer"
- Match existing wallets/categories and use their ID. If nothing matches, "exists": false, "id": null and suggest a fitting emoji
- Currency is {self._default_currency} unless another one is stated
- Amount is a plain number without symbols ("20 mil" = 20000, "medio palo" = 500000, "$5" = 5)
- Write the description in the user's language
- Use "clarification" only to ask the user something you cannot infer (e.g. the destination wallet)
- confidence is between 0 and 1"""

    @staticmethod
    def _resolve_ref(
        raw: Any,
        known: dict[int, str],
        default_name: Optional[str],
        default_emoji: Optional[str],
    ) -> EntityRef:
        """Ground a model reference on the entities that actually exist."""
        raw = raw if isinstance(raw, dict) else {}
        name = raw.get("name") or default_name
        emoji = raw.get("emoji") or default_emoji

        ref_id = raw.get("id")
        try:
            ref_id = int(ref_id) if ref_id is not None else None
        except (TypeError, ValueError):
            ref_id = None

        if ref_id is not None and ref_id in known and raw.get("exists", True):
            return EntityRef(id=ref_id, name=known[ref_id], emoji=emoji, exists=True)

        # The model may name an existing entity without its id
        if name:
            for known_id, known_name in known.items():
                if known_name.strip().lower() == str(name).strip().lower():
                    return EntityRef(id=known_id, name=known_name, emoji=emoji, exists=True)

        return EntityRef(id=None, name=name, emoji=emoji, exists=False)

    def normalize(
        self,
        data: dict,
        text: str,
        wallets: list[Wallet],
        categories: list[Category],
    ) -> TransactionProposal:
        """Fill the model's answer with defaults and ground its references."""
        try:
            tx_type = TransactionType(str(data.get("type", "expense")).lower())
        except ValueError:
            tx_type = TransactionType.EXPENSE

        try:
            amount = Decimal(str(data.get("amount") or 0))
        except InvalidOperation:
            amount = Decimal("0")
        if amount < 0:
            amount = -amount

        try:
            confidence = float(data.get("confidence", FALLBACK_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = FALLBACK_CONFIDENCE
        if math.isnan(confidence):
            raise ValueError("confidence is not a number")
        confidence = min(max(confidence, 0.0), 1.0)

        wallet_names = {w.id: w.name for w in wallets}
        category_names = {c.id: c.name for c in categories}

        destination_raw = data.get("walletDestination", data.get("wallet_destination"))
        destination = None
        if isinstance(destination_raw, dict) and (
            destination_raw.get("name") or destination_raw.get("id") is not None
        ):
            destination = self._resolve_ref(destination_raw, wallet_names, None, None)

        return TransactionProposal(
            type=tx_type,
            amount=amount,
            currency=data.get("currency") or self._default_currency,
            description=str(data.get("description") or text)[:500],
            category=self._resolve_ref(
                data.get("category"),
                category_names,
                FALLBACK_CATEGORY_NAME,
                FALLBACK_CATEGORY_EMOJI,
            ),
            wallet=self._resolve_ref(
                data.get("wallet"),
                wallet_names,
                FALLBACK_WALLET_NAME,
                FALLBACK_WALLET_EMOJI,
            ),
            wallet_destination=destination,
            confidence=confidence,
            clarification=data.get("clarification") or None,
            raw_text=text,
        )

    async def interpret(
        self,
        text: str,
        wallets: list[Wallet],
        categories: list[Category],
    ) -> TransactionProposal:
        """
        Interpret free text against the user's active wallets and categories.

        Raises:
            ValidationError: If the text is empty
            CollaboratorError: If the model fails, answers without JSON or
                answers with values that cannot be used
        """
        text = (text or "").strip()
        if not text:
            raise ValidationError("Text is empty", details={"field": "text"})

        answer = await self._generate(self._build_prompt(text, wallets, categories))
        try:
            data = extract_json(answer)
        except ValueError as e:
            raise CollaboratorError(
                self.service_name,
                "The assistant could not interpret the message. Try being more specific.",
            ) from e

        try:
            return self.normalize(data, text, wallets, categories)
        except (ValueError, ArithmeticError) as e:
            # Out-of-range values: pydantic rejections and NaN or infinite numbers
            raise CollaboratorError(
                self.service_name,
                "The assistant answered with values that cannot be used. Try again.",
            ) from e


class TranscriptionAgent(GeminiAgent):
    """Turns a recorded voice note into text."""

    service_name = "transcriber"

    def _temperature(self) -> float:
        return 0.0

    async def transcribe(self, audio: bytes, mime_type: str = "audio/webm") -> str:
        """
        Raises:
            ValidationError: If no audio was received
            CollaboratorError: If the model fails or hears nothing
        """
        if not audio:
            raise ValidationError("No audio received", details={"field": "audio"})

        prompt = (
            "Transcribe this voice note verbatim. "
            f"The speaker most likely uses the language '{self._settings.transcription_language}'. "
            "Respond with the transcription only."
        )
        text = await self._generate([
            prompt,
            {"mime_type": normalize_mime_type(mime_type), "data": audio},
        ])

        if not text:
            raise CollaboratorError(
                self.service_name,
                "Could not transcribe the audio. Try again.",
            )
        return text


class ReviewAgent(GeminiAgent):
    """
    Writes a plain-text review of one period.

    The model only sees the aggregated figures and the period's rows.
    """

    service_name = "reviewer"

    def _temperature(self) -> float:
        return self._settings.review_temperature

    @staticmethod
    def build_context(
        report: StatsReport,
        transactions: list[TransactionRow],
        today: Optional[date] = None,
    ) -> str:
        today = today or date.today()
        period = report.period
        start = period.start.isoformat() if period.start else "beginning"
        end = period.end.isoformat() if period.end else today.isoformat()
        totals = report.totals

        lines = [
            f"PERIOD: {start} to {end}",
            f"TODAY: {today.isoformat()}",
            f"TOTAL INCOME: {totals.income:,.2f}",
            f"TOTAL EXPENSES: {totals.expense:,.2f}",
            f"PERIOD BALANCE: {totals.net:,.2f}",
            f"SAVINGS RATE: {totals.savings_rate:.1%}",
        ]

        over_budget = [c for c in report.by_category if c.over_budget]
        if over_budget:
            lines.append("OVER BUDGET: " + ", ".join(
                f"{c.name} ({c.total:,.2f} of {c.budget_limit:,.2f})" for c in over_budget
            ))

        lines.append("")
        lines.append(f"TRANSACTIONS ({len(transactions)} in total):")
        labels = {
            TransactionType.INCOME: "INCOME",
            TransactionType.EXPENSE: "EXPENSE",
            TransactionType.TRANSFER: "TRANSFER",
        }
        for tx in transactions:
            lines.append(
                f"- [{tx.date.isoformat()}] {labels[tx.type]} {tx.amount:,.2f} {tx.currency}"
                f" | Category: {tx.category_name or 'None'}"
                f" | Wallet: {tx.wallet_name or 'N/A'}"
                f' | "{tx.description}"'
            )
        return "\n".join(lines)

    async def review(
        self,
        report: StatsReport,
        transactions: list[TransactionRow],
        today: Optional[date] = None,
    ) -> str:
        """Review the period; a fixed message when there is nothing in it."""
        if not transactions:
            return EMPTY_PERIOD_REVIEW

        prompt = f"""You are a personal finance advisor. Analyse the figures below and write useful, practical and motivating insights.

Include:
1. A short executive summary of the period (2-3 sentences)
2. Relevant spending patterns
3. Alerts if something looks unusual
4. Specific saving tips based on the data
5. A projection for the rest of the month if it is not over

Be friendly, direct and constructive. Reply in plain text with clear sections.

IMPORTANT: Use ONLY the data below. Do NOT add figures that are not in it.

{self.build_context(report, transactions, today)}"""

        text = await self._generate(prompt)
        return text or REVIEW_UNAVAILABLE
