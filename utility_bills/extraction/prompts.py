"""Response schema and prompt for utility bill field extraction."""

import json
from typing import Any

from utility_bills.models import BillType

_NULLABLE_STRING = {"type": ["string", "null"]}

BILL_SCHEMA: dict[str, Any] = {
    "name": "utility_bill",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "bill_type": {"type": "string", "enum": [t.value for t in BillType]},
            "vendor_name": {"type": "string"},
            "amount_due": {"type": "number"},
            "due_date": {"type": "string"},
            "billing_period_start": _NULLABLE_STRING,
            "billing_period_end": _NULLABLE_STRING,
            "customer_no": _NULLABLE_STRING,
            "payment_account": _NULLABLE_STRING,
            "evidence": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "amount_text": _NULLABLE_STRING,
                    "due_date_text": _NULLABLE_STRING,
                    "vendor_text": _NULLABLE_STRING,
                },
                "required": ["amount_text", "due_date_text", "vendor_text"],
            },
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        },
        "required": [
            "bill_type",
            "vendor_name",
            "amount_due",
            "due_date",
            "billing_period_start",
            "billing_period_end",
            "customer_no",
            "payment_account",
            "evidence",
            "confidence",
        ],
    },
}

SYSTEM_PROMPT = (
    "You extract Korean utility bill fields from OCR text. "
    "Follow the schema strictly. If uncertain, lower confidence."
)

# Korean disambiguation rules: pick the amount payable this month, never the
# overdue/penalty amount, and the date next to the payment deadline.
EXTRACTION_RULES = (
    "다음 OCR 텍스트에서 공과금 고지서를 구조화해줘. 필수 규칙:",
    "- 금액 후보가 여러 개면 '납부할 금액/납부금액/당월/이번달' 근처를 amount_due로 선택",
    "- '미납/연체/가산금'은 amount_due로 선택 금지",
    "- 날짜 후보가 여러 개면 '납부기한/납기/까지' 근처를 due_date로 선택",
    "- 날짜는 YYYY-MM-DD 형식",
)


def build_messages(
    ocr_text: str, template_fields: list[dict[str, Any]] | None = None
) -> list[dict[str, str]]:
    """Build the chat messages for one extraction request.

    Args:
        ocr_text: Plain OCR text of the bill.
        template_fields: Raw template OCR field entries used as hints.

    Returns:
        System and user messages.
    """
    user_payload = {"ocr_text": ocr_text, "template_fields": template_fields}
    user_content = "\n".join(
        [
            *EXTRACTION_RULES,
            "",
            "OCR 입력:",
            json.dumps(user_payload, ensure_ascii=False, indent=2),
        ]
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
    ]
