"""
AI Agents for Expense Ledger

DESIGN DECISION: One Gemini-backed agent serves all three AI modes
(email parsing, classification, repayment matching). They share the
model, the rate limit and the JSON extraction.

CRITICAL BOUNDARIES:

1. The agent NEVER touches the ledger. It only answers questions.
2. The agent's answers are RAW. Validation happens at the classification
   boundary, and anything invalid is discarded.
3. A transport failure raises ClassifierError; an unparsable answer
   returns None. Either way the movement is retried on a later run.

The LLM is a TRANSLATOR, not an ORACLE.
It reads free text and reports what it finds. It never invents amounts.
"""

import json
import re
from typing import Any, Optional

import google.generativeai as genai
import structlog

from expense_ledger.agents.interface import (
    ClassifierError,
    MovementClassifier,
    RepaymentMatcher,
)
from expense_ledger.config import GeminiSettings, get_settings
from expense_ledger.models.classification import ClassificationRequest
from expense_ledger.models.movement import Movement, MovementCategory
from expense_ledger.models.sources import EmailMessage


logger = structlog.get_logger(__name__)


EMAIL_PARSING_PROMPT = """You are an expert at parsing bank transaction emails for expense tracking. Extract transaction information from the following email and return it in JSON format.

Email content:
{body}

Classify the transaction type using ONLY these values:
- "expense": Regular purchases paid by me (most common)
- "cash": Cash withdrawals from ATM or bank
- "debit": Money I lent to other people (I paid but expect to be paid back)
- "credit": Money someone else lent to me (they paid for me, I owe them)
- "debit repayment": Someone paying me back money I lent them

Return a JSON object with:
- amount: The transaction amount as a number
- currency: The currency code (CLP, USD, or GBP)
- source_description: The merchant/description from the email
- timestamp: The transaction timestamp in ISO 8601 format
- transaction_type: ONE of the 5 types listed above

If you cannot extract a field, set it to null. Only return valid JSON, no additional text."""


CLASSIFICATION_PROMPT = """You are an expert at categorizing personal expenses and deciding whether they need to be split.

User Description: "{description}"

The description may include both the main description and a comment. Look for split instructions in both.

Additional Context:
- Amount: {currency} {amount}
- Source Description: {source_description}
- Type: {type}
- Direction: {direction}

Available Categories (choose ONLY one):
{categories}

SPLIT ANALYSIS:
1. DEBIT split: the payment was shared with other people who will pay me back.
   Indicators: "split with", "shared with", "paid for group", "my part", "dividir con".
2. EXPENSE split: one payment covers two of my own expense categories.
   Indicators: "split 20 for household", "15 for transport, rest is food".

Return ONLY this JSON object:
{{
  "category": "category_name" | null,
  "needs_split": true | false,
  "split_type": "DEBIT" | "EXPENSE" | null,
  "split_amount": number | null,
  "split_description": "string" | null,
  "split_category": "category_name" | null,
  "clean_description": "string"
}}

Rules:
- No split: set every split_* field to null; clean_description is the description without comments.
- DEBIT split: category is MY portion's category, split_amount is MY portion, split_description describes the part others owe me, split_category equals category.
- EXPENSE split: category is null, split_amount is the amount to move into a NEW movement, split_description describes that new movement, split_category is null, clean_description is the description without the split instruction.

Example (no split): "Lunch at cafe", CLP 10000 ->
{{"category": "restaurants", "needs_split": false, "split_type": null, "split_amount": null, "split_description": null, "split_category": null, "clean_description": "Lunch at cafe"}}

Example (DEBIT): "Dinner with friends, my part is 25", GBP 75 ->
{{"category": "restaurants", "needs_split": true, "split_type": "DEBIT", "split_amount": 25, "split_description": "Dinner with friends (shared part)", "split_category": "restaurants", "clean_description": "Dinner with friends (my part)"}}

Example (EXPENSE): "Supermarket. split 15 for household items", USD 100 ->
{{"category": null, "needs_split": true, "split_type": "EXPENSE", "split_amount": 15, "split_description": "household items", "split_category": null, "clean_description": "Supermarket"}}"""


MATCHING_PROMPT = """You are an expert at matching financial transactions. Match this debit repayment to one of the pending debit movements.

REPAYMENT TO MATCH:
- Amount: {currency} {amount}
- Description: "{description}"
- Comment: "{comment}"
- Date: {date}

PENDING DEBIT MOVEMENTS:
{candidates}

Consider, in order of importance:
- Amount similarity (the repayment should be at least 95% of the debit amount)
- Description similarity (keywords, activity type)
- Time proximity (repayments usually follow within days or weeks)
- Explicit references in the comment

If several debits fit, choose the closest amount.

Return ONLY the ID number of the best match (e.g. "123"), or "null" if nothing fits."""


def extract_json_object(text: str) -> Optional[dict]:
    """Pull the outermost JSON object out of a model answer."""
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        return None
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_movement_id(text: str) -> Optional[int]:
    """Read a matcher answer: the first integer, or None for "null"."""
    match = re.search(r"\d+", text)
    if match:
        return int(match.group(0))
    return None


class GeminiMovementAgent(MovementClassifier, RepaymentMatcher):
    """
    Gemini-backed classifier and repayment matcher.

    RESPONSIBILITIES:
    - Parse bank notification emails into transaction fields
    - Categorize movements and detect split instructions
    - Pick the pending debit a repayment settles

    BOUNDARIES:
    - NEVER writes to the ledger
    - NEVER returns validated data (callers validate)
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,  # Low temperature for consistency
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def _generate(self, prompt: str, mode: str) -> str:
        try:
            response = await self._model.generate_content_async(prompt)
            return response.text.strip()
        except Exception as e:
            logger.warning("gemini_request_failed", mode=mode, error=str(e))
            raise ClassifierError(f"Gemini {mode} request failed: {e}") from e

    async def parse_email(self, email: EmailMessage) -> Any:
        text = await self._generate(
            EMAIL_PARSING_PROMPT.format(body=email.body),
            mode="email_parsing",
        )
        data = extract_json_object(text)
        if data is None:
            logger.warning("gemini_no_json", mode="email_parsing", message_id=email.message_id)
        return data

    async def classify(self, request: ClassificationRequest) -> Any:
        prompt = CLASSIFICATION_PROMPT.format(
            description=request.description,
            currency=request.currency.value,
            amount=request.amount,
            source_description=request.source_description or "Not provided",
            type=request.type.value,
            direction=request.direction.value,
            categories="\n".join(f"- {name}" for name in MovementCategory.values()),
        )
        text = await self._generate(prompt, mode="classification")
        data = extract_json_object(text)
        if data is None:
            logger.warning("gemini_no_json", mode="classification", response=text[:200])
        return data

    async def match(
        self,
        repayment: Movement,
        candidates: list[Movement],
    ) -> Optional[int]:
        if not candidates:
            logger.info("no_pending_debits_to_match", repayment_id=repayment.id)
            return None

        candidate_lines = "\n".join(
            f'ID: {debit.id} | Date: {_format_date(debit)} | '
            f'Amount: {debit.currency.value} {debit.amount} | '
            f'Description: "{debit.user_description or debit.source_description}" | '
            f'Comment: "{debit.comment or "None"}"'
            for debit in candidates
        )
        prompt = MATCHING_PROMPT.format(
            currency=repayment.currency.value,
            amount=repayment.amount,
            description=repayment.user_description or "None",
            comment=repayment.comment or "None",
            date=_format_date(repayment),
            candidates=candidate_lines,
        )
        text = await self._generate(prompt, mode="matching")
        matched_id = extract_movement_id(text)
        logger.info(
            "gemini_match_answer",
            repayment_id=repayment.id,
            matched_id=matched_id,
        )
        return matched_id


def _format_date(movement: Movement) -> str:
    return movement.timestamp.date().isoformat() if movement.timestamp else "unknown"
