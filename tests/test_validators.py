"""
Unit tests for the field sanitizer and the validation tracker.
"""
import pytest

from morrisons_edi.core.validators import SENTINEL, ValidationTracker, is_blank, sanitize


class TestSanitize:
    """Test suite for single field sanitization"""

    @pytest.mark.parametrize('value', [None, '', '   ', '\t\n'])
    def test_missing_values_get_sentinel(self, value):
        """Test that missing and whitespace-only values are replaced"""
        result = sanitize(value, 'config.senderGLN')

        assert result.value == SENTINEL
        assert not result.is_valid
        assert result.field_name == 'config.senderGLN'
        assert result.original_value == value

    def test_custom_default(self):
        """Test that a caller supplied default replaces the sentinel"""
        result = sanitize(None, 'invoice.currency', default='GBP')

        assert result.value == 'GBP'
        assert not result.is_valid

    def test_strings_are_stripped(self):
        result = sanitize('  5012345000001 ', 'config.senderGLN')

        assert result.value == '5012345000001'
        assert result.is_valid

    @pytest.mark.parametrize('value,expected', [
        (0, '0'),
        (42, '42'),
        (False, 'False'),
        (12.5, '12.5'),
    ])
    def test_non_strings_are_stringified(self, value, expected):
        """Test that falsy but present values are valid"""
        result = sanitize(value, 'field')

        assert result.value == expected
        assert result.is_valid

    def test_never_raises_on_odd_input(self):
        result = sanitize(object(), 'field')
        assert result.is_valid

    def test_is_blank(self):
        assert is_blank(None)
        assert is_blank('  ')
        assert not is_blank(0)
        assert not is_blank('x')


class TestValidationTracker:
    """Test suite for validation accumulation"""

    def test_starts_valid(self):
        summary = ValidationTracker().summary()

        assert summary.is_valid
        assert not summary.has_undefined_data
        assert summary.invalid_field_count == 0
        assert summary.invalid_fields == []
        assert summary.warnings == []

    def test_valid_results_do_not_invalidate(self):
        tracker = ValidationTracker()

        assert tracker.validate('GBP', 'invoice.currency') == 'GBP'
        assert tracker.summary().is_valid

    def test_invalid_result_recorded(self):
        """Test that a substituted field appears in the summary"""
        tracker = ValidationTracker()

        value = tracker.validate(None, 'config.supplierVAT')
        summary = tracker.summary()

        assert value == SENTINEL
        assert not summary.is_valid
        assert summary.has_undefined_data
        assert summary.invalid_field_count == 1
        assert summary.invalid_fields[0].field == 'config.supplierVAT'
        assert summary.invalid_fields[0].replaced_with == SENTINEL

    def test_invalid_is_permanent(self):
        """Test that later valid fields cannot restore validity"""
        tracker = ValidationTracker()
        tracker.validate('', 'config.senderGLN')
        tracker.validate('5010251000006', 'config.receiverGLN')
        tracker.validate('30', 'config.paymentTerms')

        assert not tracker.summary().is_valid
        assert tracker.summary().invalid_field_count == 1

    def test_warnings_do_not_invalidate(self):
        tracker = ValidationTracker()
        tracker.warn('Net amount is zero')

        summary = tracker.summary()
        assert summary.is_valid
        assert summary.warnings == ['Net amount is zero']

    def test_summary_serializes_with_camel_case(self):
        tracker = ValidationTracker()
        tracker.validate(None, 'invoice.issueDate')

        dumped = tracker.summary().model_dump(by_alias=True)

        assert dumped['isValid'] is False
        assert dumped['hasUndefinedData'] is True
        assert dumped['invalidFieldCount'] == 1
        assert dumped['invalidFields'][0]['field'] == 'invoice.issueDate'
        assert dumped['invalidFields'][0]['replacedWith'] == SENTINEL
