"""
Unit tests for the EDIFACT segment codec.
"""
from datetime import datetime, timezone

import pytest

from morrisons_edi.core import segments as seg
from morrisons_edi.core.validators import SENTINEL, ValidationTracker


class TestDateFormatting:

    def test_datetime_mode(self):
        assert seg.format_date('2024-03-15T10:30:45', seg.DTM_FORMAT_DATETIME) == '20240315103045'

    def test_date_mode(self):
        assert seg.format_date('2024-03-15T10:30:45', seg.DTM_FORMAT_DATE) == '20240315'

    def test_offset_is_kept(self):
        """Test that the time is rendered in the offset it was given in"""
        assert seg.format_date('2024-03-15T23:30:00+05:00') == '20240315233000'
        assert seg.format_date('2024-03-15T23:30:00Z') == '20240315233000'

    def test_accepts_datetime_objects(self):
        value = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert seg.format_date(value) == '20240102030405'

    @pytest.mark.parametrize('value', ['not a date', '2024-13-45', None, ''])
    def test_unparseable_falls_back_with_warning(self, value):
        tracker = ValidationTracker()

        assert seg.format_date(value, seg.DTM_FORMAT_DATE, tracker) == '19700101'
        assert seg.format_date(value, seg.DTM_FORMAT_DATETIME, tracker) == '19700101000000'
        assert len(tracker.warnings) == 2
        assert tracker.summary().is_valid

    def test_interchange_timestamp(self):
        assert seg.interchange_timestamp('2024-03-15T10:30:00') == '240315:1030'


class TestAmounts:

    @pytest.mark.parametrize('value,expected', [
        (20, '20.00'),
        (2.5, '2.50'),
        ('13.335', '13.34'),
        (0.125, '0.13'),
        ('-4.5', '-4.50'),
    ])
    def test_two_decimal_places(self, value, expected):
        assert seg.format_amount(value) == expected

    @pytest.mark.parametrize('value', [None, 'abc', float('nan'), True])
    def test_non_numeric_renders_zero(self, value):
        tracker = ValidationTracker()

        assert seg.format_amount(value, tracker) == '0.00'
        assert tracker.warnings

    def test_quantity_formatting(self):
        assert seg.format_quantity(10) == '10'
        assert seg.format_quantity('4.0') == '4'
        assert seg.format_quantity(1.5) == '1.5'
        assert seg.format_quantity(None) is None


class TestVat:
    """Test suite for VAT rate and category derivation"""

    def test_rate_from_net_and_tax(self):
        assert seg.calculate_vat_rate(20, 4) == '20.00'
        assert seg.calculate_vat_rate(30, 4) == '13.33'

    def test_zero_net_gives_zero_rate(self):
        tracker = ValidationTracker()

        assert seg.calculate_vat_rate(0, 5, tracker) == '0.00'
        assert len(tracker.warnings) == 1

    def test_nan_operand_gives_zero_rate(self):
        tracker = ValidationTracker()

        assert seg.calculate_vat_rate(float('nan'), 1, tracker) == '0.00'
        assert tracker.warnings

    @pytest.mark.parametrize('rate,category', [
        ('0.00', 'Z'),
        (0, 'Z'),
        ('5.00', 'L'),
        ('20.00', 'S'),
        ('17.50', 'S'),
        ('12.34', 'S'),
        ('nan', 'S'),
        (None, 'S'),
    ])
    def test_category_mapping(self, rate, category):
        """Test that only 0 and 5 leave the standard category"""
        assert seg.vat_category(rate) == category

    def test_tax_segment(self):
        assert seg.tax(20, 4) == 'TAX+7+VAT+++:::20.00+S'
        assert seg.tax(10, 0) == 'TAX+7+VAT+++:::0.00+Z'
        assert seg.tax(100, 5) == 'TAX+7+VAT+++:::5.00+L'


class TestPaddingAndEscaping:

    def test_padding_widths(self):
        assert seg.pad_number('4521', seg.ORDER_NUMBER_WIDTH) == '00004521'
        assert seg.pad_number('4521', seg.VENDOR_REFERENCE_WIDTH) == '0000004521'
        assert seg.pad_number('4521', seg.CONTROL_NUMBER_WIDTH) == '0004521'

    def test_long_values_are_not_truncated(self):
        assert seg.pad_number('123456789', seg.ORDER_NUMBER_WIDTH) == '123456789'

    def test_sentinel_is_not_padded(self):
        assert seg.pad_number(SENTINEL, seg.ORDER_NUMBER_WIDTH) == SENTINEL

    def test_escape_text(self):
        assert seg.escape_text("O'BRIEN+SONS") == "O?'BRIEN?+SONS"
        assert seg.escape_text('A:B?C') == 'A?:B??C'
        assert seg.escape_text('A:B', keep=':') == 'A:B'


class TestSegments:

    def test_header_segments(self):
        assert seg.unb('5012345000001', '5010251000006', '240315:1030', '0004521') == (
            'UNB+UNOA:3+5012345000001+5010251000006:14+240315:1030+0004521++INVOIC++++1'
        )
        assert seg.unh() == 'UNH+1+INVOIC:D:96A:UN:EAN008'
        assert seg.bgm('00004521') == 'BGM+380:::MRCHI+00004521+9'

    def test_line_segments(self):
        assert seg.lin(1, '5000000000011') == 'LIN+1++5000000000011:EN'
        assert seg.qty('10') == 'QTY+47:10:EA'
        assert seg.pri(2) == 'PRI+AAA:2.00'
        assert seg.moa(seg.MOA_LINE_VALUE, 20) == 'MOA+203:20.00'

    def test_party_segments(self):
        assert seg.nad('SU', '5012345000001', 'ACME:STREET') == 'NAD+SU+5012345000001::9+ACME:STREET'
        assert seg.cux('GBP') == 'CUX+2:GBP:4'
        assert seg.pat('30') == 'PAT+1+6:::30'

    def test_trailers(self):
        assert seg.unt(35) == 'UNT+35+1'
        assert seg.unz('0004521') == 'UNZ+1+0004521'
        assert seg.cnt(2) == 'CNT+2:2'


class TestPayload:

    def test_render_terminates_and_joins(self):
        assert seg.render_payload(['UNH+1', 'BGM+380']) == "UNH+1'\nBGM+380'"

    def test_split_round_trip(self):
        segments = ['UNH+1', "NAD+DP+1::9+O?'BRIEN", 'UNT+3+1']
        assert seg.split_segments(seg.render_payload(segments)) == segments

    def test_split_tolerates_missing_newlines(self):
        assert seg.split_segments("A+1'B+2'") == ['A+1', 'B+2']

    def test_trailer_count_covers_whole_interchange(self):
        segments = ['UNB+x', 'UNH+1', 'BGM+380', 'UNT+5+1', 'UNZ+1+x']
        assert seg.trailer_segment_count(segments) == len(segments)

    def test_trailer_count_before_trailers_are_emitted(self):
        assert seg.trailer_segment_count(['UNB+x', 'UNH+1', 'BGM+380']) == 5
