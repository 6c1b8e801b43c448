"""
Report generation utilities.
Creates human-readable processing reports for operators.
"""
import csv
import json
from collections import Counter
from datetime import datetime
from typing import Iterable, List, Optional

from morrisons_edi.core.models import ProcessingResult, ValidationSummary
from morrisons_edi.processing.ledger import result_category

STEP_MARKERS = {
    'pending': '[ ]',
    'processing': '[~]',
    'success': '[+]',
    'error': '[x]',
    'not-attempted': '[-]',
}


def _timestamp(value: Optional[datetime]) -> str:
    return value.strftime('%Y-%m-%d %H:%M:%S') if value else '-'


def format_validation(validation: ValidationSummary) -> List[str]:
    """Substituted fields as ``field: original -> replacement``, then warnings"""
    lines = []
    if validation.invalid_fields:
        lines.append(f"Undefined fields ({validation.invalid_field_count}):")
        for field in validation.invalid_fields:
            lines.append(f"  - {field.field}: {field.original_value!r} -> {field.replaced_with}")
    if validation.warnings:
        lines.append(f"Warnings ({len(validation.warnings)}):")
        for warning in validation.warnings:
            lines.append(f"  - {warning}")
    return lines


def generate_result_report(result: ProcessingResult) -> str:
    """
    Full history of one processing attempt.

    Args:
        result: Ledger entry

    Returns:
        Formatted text report
    """
    lines = []

    lines.append("=" * 70)
    lines.append(f"INVOICE {result.invoice_id}")
    lines.append("=" * 70)
    lines.append(f"Attempt:    {result.unique_key}")
    lines.append(f"Status:     {result.status.upper()} ({result_category(result)})")
    lines.append(f"Started:    {_timestamp(result.start_time)}")
    lines.append(f"Completed:  {_timestamp(result.completed_at)}")
    if result.error:
        lines.append(f"Error:      {result.error}")
    lines.append("")

    lines.append("STEPS")
    lines.append("-" * 70)
    for step in result.steps:
        marker = STEP_MARKERS.get(step.status, '[?]')
        lines.append(f"{marker} {step.name} ({step.status})")
        if step.error:
            lines.append(f"      Error: {step.error}")
        if step.warning:
            lines.append(f"      Warning: {step.warning}")
    lines.append("")

    if result.validation is not None:
        validation_lines = format_validation(result.validation)
        if validation_lines:
            lines.append("VALIDATION")
            lines.append("-" * 70)
            lines.extend(validation_lines)
            lines.append("")

    if result.is_manually_edited or result.manual_transmission_status:
        lines.append("MANUAL ACTIONS")
        lines.append("-" * 70)
        if result.is_manually_edited:
            lines.append(f"Edited:       {_timestamp(result.last_edited_at)}")
        if result.manual_transmission_status:
            lines.append(f"Transmission: {result.manual_transmission_status} "
                         f"({_timestamp(result.manual_transmission_completed)})")
        if result.manual_transmission_error:
            lines.append(f"  Error: {result.manual_transmission_error}")
        lines.append("")

    return "\n".join(lines)


def generate_ledger_report(results: Iterable[ProcessingResult]) -> str:
    """Summary of every attempt in the ledger, failures detailed"""
    results = list(results)
    categories = Counter(result_category(r) for r in results)
    total = len(results)

    lines = []

    lines.append("=" * 70)
    lines.append("MORRISONS EDI DISPATCH REPORT")
    lines.append("=" * 70)
    lines.append(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append("")

    lines.append("SUMMARY")
    lines.append("-" * 70)
    lines.append(f"Total Attempts:   {total}")
    for category in ('success', 'error', 'manual'):
        count = categories.get(category, 0)
        share = f" ({count / total * 100:.1f}%)" if total else ""
        lines.append(f"{category.capitalize():<17} {count}{share}")
    lines.append("")

    undefined = Counter()
    for result in results:
        if result.validation is not None:
            for field in result.validation.invalid_fields:
                undefined[field.field] += 1

    if undefined:
        lines.append("MOST FREQUENT UNDEFINED FIELDS")
        lines.append("-" * 70)
        for field, count in undefined.most_common(10):
            lines.append(f"{field}: {count}")
        lines.append("")

    failed = [r for r in results if result_category(r) == 'error']
    if failed:
        lines.append("FAILED INVOICES")
        lines.append("-" * 70)
        for result in failed[:20]:
            lines.append(f"Invoice: {result.invoice_id}")
            lines.append(f"  Error: {result.error or 'unknown'}")
        if len(failed) > 20:
            lines.append(f"... and {len(failed) - 20} more failed invoices")
        lines.append("")

    lines.append("=" * 70)
    lines.append("END OF REPORT")
    lines.append("=" * 70)

    return "\n".join(lines)


def generate_csv_report(results: Iterable[ProcessingResult], output_path: str):
    """One row per attempt"""
    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)

        writer.writerow([
            'Invoice',
            'Attempt',
            'Status',
            'Category',
            'Undefined Fields',
            'Error',
        ])

        for result in results:
            undefined = result.validation.invalid_field_count if result.validation else 0
            writer.writerow([
                result.invoice_id,
                result.unique_key,
                result.status,
                result_category(result),
                undefined,
                result.error or '',
            ])


def generate_json_report(results: Iterable[ProcessingResult], output_path: str):
    """Dump every attempt, payloads included"""
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(
            [r.model_dump(mode='json') for r in results],
            f, indent=2, default=str
        )
