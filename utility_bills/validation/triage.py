"""Normalization and confidence triage of extracted bill fields.

Coerces the language model's candidate object into the strict bill schema,
applies fixed confidence penalties for missing or implausible fields and
decides whether the bill can be auto-confirmed.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from utility_bills.models import BillStatus, BillType
from utility_bills.utils.config import ValidationConfig
from utility_bills.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL_CONFIDENCE = 0.5

PENALTY_VENDOR_MISSING = 0.15
PENALTY_AMOUNT_MISSING = 0.4
PENALTY_DUE_DATE_MISSING = 0.3
PENALTY_AMOUNT_EVIDENCE_MISSING = 0.1
PENALTY_DUE_DATE_EVIDENCE_MISSING = 0.1
PENALTY_OCR_TEXT_EMPTY = 0.2

_DATE_PATTERN = re.compile(r"(\d{4})\D{0,3}(\d{1,2})\D{0,3}(\d{1,2})")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, value))


def normalize_text(value: Any) -> str | None:
    """Trim a string value; non-strings and blanks become ``None``."""
    if not isinstance(value, str):
        return None
    return value.strip() or None


def parse_amount(value: Any) -> int | None:
    """Parse a currency amount into whole units, rounding half up.

    Strings have every character other than digits, ``.`` and ``-`` removed
    first, so ``"45,000원"`` parses as ``45000``.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        cleaned = _NON_NUMERIC.sub("", value)
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return math.floor(number + 0.5)


def parse_date(value: Any) -> str | None:
    """Parse loose ``YYYY?MM?DD`` text into an ISO date string.

    Up to three non-digit characters may separate the parts, which covers
    ``2024-03-25``, ``2024.3.25`` and ``2024년 03월 25일``.
    """
    text = normalize_text(value)
    if text is None:
        return None
    match = _DATE_PATTERN.search(text)
    if not match:
        return None
    try:
        parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None
    return parsed.isoformat()


def parse_bill_type(value: Any) -> BillType:
    """Map a bill type to the closed enum, defaulting to ``ETC``."""
    text = (normalize_text(value) or "").upper()
    try:
        return BillType(text)
    except ValueError:
        return BillType.ETC


def parse_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_MODEL_CONFIDENCE
    try:
        number = float(value)
    except OverflowError:
        return DEFAULT_MODEL_CONFIDENCE
    if not math.isfinite(number):
        return DEFAULT_MODEL_CONFIDENCE
    return clamp(number)


@dataclass
class PenaltyCheck:
    """Outcome of one confidence check."""

    name: str
    passed: bool
    penalty: float

    @property
    def adjustment(self) -> float:
        return 0.0 if self.passed else -self.penalty


@dataclass
class TriageResult:
    """Normalized fields, final confidence and the resulting status."""

    fields: dict[str, Any]
    evidence: dict[str, str | None]
    model_confidence: float
    confidence: float
    status: BillStatus
    checks: list[PenaltyCheck] = field(default_factory=list)
    capped: bool = False

    def to_json(self) -> dict[str, Any]:
        """Serialize for the job's ``extracted_json`` provenance blob."""
        return {
            **self.fields,
            "bill_type": self.fields["bill_type"].value,
            "evidence": dict(self.evidence),
            "model_confidence": self.model_confidence,
            "confidence": self.confidence,
            "penalties": [c.name for c in self.checks if not c.passed],
            "capped_without_document": self.capped,
        }


def normalize_candidate(candidate: dict[str, Any]) -> dict[str, Any]:
    """Coerce every bill field of a candidate object into its strict type."""
    return {
        "vendor_name": normalize_text(candidate.get("vendor_name")),
        "bill_type": parse_bill_type(candidate.get("bill_type")),
        "amount_due": parse_amount(candidate.get("amount_due")),
        "due_date": parse_date(candidate.get("due_date")),
        "billing_period_start": parse_date(candidate.get("billing_period_start")),
        "billing_period_end": parse_date(candidate.get("billing_period_end")),
        "customer_no": normalize_text(candidate.get("customer_no")),
        "payment_account": normalize_text(candidate.get("payment_account")),
    }


def normalize_evidence(raw: Any) -> dict[str, str | None]:
    evidence = raw if isinstance(raw, dict) else {}
    return {
        key: normalize_text(evidence.get(key))
        for key in ("amount_text", "due_date_text", "vendor_text")
    }


class ResultValidator:
    """Scores extraction candidates and decides auto-confirmation.

    Args:
        config: Threshold and cap settings.
    """

    def __init__(self, config: ValidationConfig | None = None) -> None:
        self.config = config or ValidationConfig()

    def evaluate(
        self, candidate: Any, doc_detected: bool, ocr_text: str
    ) -> TriageResult:
        """Normalize a candidate object and compute its confidence.

        Args:
            candidate: Raw object returned by the field extractor.
            doc_detected: Whether preprocessing found the document boundary.
            ocr_text: OCR text the candidate was extracted from.

        Returns:
            Triage result with normalized fields, confidence and status.
        """
        raw = candidate if isinstance(candidate, dict) else {}
        fields = normalize_candidate(raw)
        evidence = normalize_evidence(raw.get("evidence"))
        model_confidence = parse_confidence(raw.get("confidence"))

        amount = fields["amount_due"]
        checks = [
            PenaltyCheck("vendor_missing", fields["vendor_name"] is not None, PENALTY_VENDOR_MISSING),
            PenaltyCheck("amount_missing", amount is not None and amount > 0, PENALTY_AMOUNT_MISSING),
            PenaltyCheck("due_date_missing", fields["due_date"] is not None, PENALTY_DUE_DATE_MISSING),
            PenaltyCheck(
                "amount_evidence_missing",
                evidence["amount_text"] is not None,
                PENALTY_AMOUNT_EVIDENCE_MISSING,
            ),
            PenaltyCheck(
                "due_date_evidence_missing",
                evidence["due_date_text"] is not None,
                PENALTY_DUE_DATE_EVIDENCE_MISSING,
            ),
            PenaltyCheck("ocr_text_empty", bool(ocr_text), PENALTY_OCR_TEXT_EMPTY),
        ]

        confidence = model_confidence + sum(c.adjustment for c in checks)
        capped = False
        if not doc_detected and confidence > self.config.no_document_cap:
            confidence = self.config.no_document_cap
            capped = True
        confidence = round(clamp(confidence), 4)

        status = (
            BillStatus.CONFIRMED
            if confidence >= self.config.auto_confirm_threshold
            else BillStatus.NEEDS_REVIEW
        )

        logger.info(
            "Triage: model confidence %.2f -> %.2f (%d penalties%s), status %s",
            model_confidence,
            confidence,
            sum(1 for c in checks if not c.passed),
            ", capped" if capped else "",
            status.value,
        )
        return TriageResult(
            fields=fields,
            evidence=evidence,
            model_confidence=model_confidence,
            confidence=confidence,
            status=status,
            checks=checks,
            capped=capped,
        )


def normalize_review_edits(payload: dict[str, Any]) -> dict[str, Any]:
    """Normalize human edits submitted with a confirm action.

    Only fields present in ``payload`` that parse to a usable value are
    returned; unknown bill types are dropped rather than defaulted.
    """
    edits: dict[str, Any] = {}
    for key in ("vendor_name", "customer_no", "payment_account"):
        value = normalize_text(payload.get(key))
        if value is not None:
            edits[key] = value

    bill_type = (normalize_text(payload.get("bill_type")) or "").upper()
    if bill_type in BillType.__members__:
        edits["bill_type"] = BillType(bill_type)

    amount = parse_amount(payload.get("amount_due"))
    if amount is not None:
        edits["amount_due"] = amount

    for key in ("due_date", "billing_period_start", "billing_period_end"):
        value = parse_date(payload.get(key))
        if value is not None:
            edits[key] = value
    return edits
