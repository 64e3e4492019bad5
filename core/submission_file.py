"""
Submission file serializer.

The portal accepts a plain text file with one payment per line:

    payment_date,tracking_key,issuer_code,receiver_code,beneficiary_account,amount
"""

import re
from pathlib import Path
from typing import Iterable, List

from core.errors import SubmissionFileError
from core.file_manager import FileManager
from core.models import PaymentRecord

AMOUNT_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")


def normalize_amount(record: PaymentRecord) -> str:
    """Strip thousands separators and check the amount is a signed decimal."""
    amount = str(record.amount).strip().replace(",", "")
    if not AMOUNT_PATTERN.match(amount):
        raise SubmissionFileError(
            f'Invalid amount format: "{record.amount}" for tracking key {record.tracking_key}'
        )
    return amount


def format_record(record: PaymentRecord) -> str:
    payment_date = record.payment_date.split("T")[0]
    return ",".join([
        payment_date,
        record.tracking_key,
        record.issuer_code,
        record.receiver_code,
        record.beneficiary_account,
        normalize_amount(record),
    ])


def render_submission(records: Iterable[PaymentRecord]) -> str:
    lines: List[str] = [format_record(record) for record in records]
    return "\n".join(lines) + "\n"


def write_submission_file(records: Iterable[PaymentRecord], job_id: str, files: FileManager) -> Path:
    """Serialize ``records`` to the job's output path and return it.

    Nothing is written when any record is malformed.
    """
    content = render_submission(records)
    path = files.output_path(job_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path
