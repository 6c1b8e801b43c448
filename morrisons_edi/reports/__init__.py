"""Morrisons EDI - Reports Package"""

from morrisons_edi.reports.generator import (
    generate_result_report,
    generate_ledger_report,
    generate_csv_report,
    generate_json_report
)

__all__ = [
    'generate_result_report',
    'generate_ledger_report',
    'generate_csv_report',
    'generate_json_report',
]
