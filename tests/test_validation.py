#!/usr/bin/env python3
"""
Unit Tests for Request Validation Helpers
"""

from datetime import datetime, timezone

import pytest

from services.errors import ValidationError
from services.validation import (
    has_address,
    is_valid_email,
    is_valid_phone,
    json_object,
    parse_account_index,
    parse_limit,
    parse_timestamp,
    sanitize_string,
    validate_address,
    validate_identity_input,
    validate_link_config,
    validate_pagination,
    validate_required,
)


class TestRequired:

    def test_all_present(self):
        validate_required({'a': 1, 'b': 'x'}, ['a', 'b'])

    def test_reports_every_missing_field(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_required({'a': '  ', 'c': []}, ['a', 'b', 'c'])
        assert exc_info.value.missing_fields == ['a', 'b', 'c']
        assert str(exc_info.value) == 'Missing required fields: a, b, c'

    def test_none_body(self):
        with pytest.raises(ValidationError):
            validate_required(None, ['a'])

    @pytest.mark.parametrize("body", [['a'], [], 'a', 3])
    def test_non_object_body(self, body):
        with pytest.raises(ValidationError) as exc_info:
            validate_required(body, ['a'])
        assert str(exc_info.value) == 'Request body must be a JSON object'

    def test_json_object(self):
        assert json_object(None) == {}
        assert json_object({'a': 1}) == {'a': 1}
        with pytest.raises(ValidationError):
            json_object([{'a': 1}])

    def test_zero_is_present(self):
        validate_required({'account_index': 0}, ['account_index'])


class TestFormats:

    @pytest.mark.parametrize("email,valid", [
        ('user@example.com', True),
        ('a.b+c@sub.example.co', True),
        ('no-at-sign', False),
        ('two@@example.com', False),
        ('space in@example.com', False),
        ('', False),
    ])
    def test_email(self, email, valid):
        assert is_valid_email(email) is valid

    @pytest.mark.parametrize("phone,valid", [
        ('+1 (415) 555-0011', True),
        ('4155550011', True),
        ('555-0011', False),
        ('415-555-CALL', False),
        ('', False),
    ])
    def test_phone(self, phone, valid):
        assert is_valid_phone(phone) is valid

    def test_sanitize(self):
        assert sanitize_string('  <b>Main St</b> ') == 'bMain St/b'
        assert sanitize_string(None) == ''
        assert len(sanitize_string('x' * 2000)) == 1000


class TestAddress:

    def test_has_address(self):
        assert has_address({'city': 'Malakoff'})
        assert not has_address({'city': '  ', 'zip': ''})
        assert not has_address(None)

    def test_country_defaults_to_us(self):
        address = validate_address({'street': '1 Main', 'city': 'Town', 'state': 'NY', 'zip': '10001'})
        assert address['country'] == 'US'

    def test_missing_parts(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_address({'street': '1 Main'})
        assert exc_info.value.missing_fields == ['city', 'state', 'zip']

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            validate_address('1 Main St')


class TestNumbers:

    @pytest.mark.parametrize("args,expected", [
        ({}, (1, 10)),
        ({'page': '3', 'limit': '25'}, (3, 25)),
        ({'page': '0', 'limit': '500'}, (1, 100)),
        ({'page': '-2', 'limit': '-5'}, (1, 1)),
        ({'page': 'abc', 'limit': 'xyz'}, (1, 10)),
    ])
    def test_pagination(self, args, expected):
        assert validate_pagination(args) == expected

    def test_parse_limit(self):
        assert parse_limit('5') == 5
        assert parse_limit('0') is None
        assert parse_limit('many') is None
        assert parse_limit(None) is None

    def test_account_index(self):
        assert parse_account_index(None) == 0
        assert parse_account_index('2') == 2
        assert parse_account_index('first') == 0
        with pytest.raises(ValidationError):
            parse_account_index(-1)


class TestTimestamp:

    def test_zulu(self):
        parsed = parse_timestamp('2025-03-01T12:00:00Z', 'after')
        assert parsed == datetime(2025, 3, 1, 12, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp('2025-03-01T12:00:00', 'after').tzinfo is not None

    def test_empty(self):
        assert parse_timestamp('', 'after') is None

    def test_invalid(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_timestamp('last tuesday', 'before')
        assert exc_info.value.field == 'before'


class TestLinkConfig:

    CONFIG = {
        'client_name': 'Kit',
        'products': ['auth'],
        'country_codes': ['US'],
        'user': {'client_user_id': 'u1'},
    }

    def test_valid(self):
        assert validate_link_config(dict(self.CONFIG)) == self.CONFIG

    @pytest.mark.parametrize("config", [None, {}, [], 'auth'])
    def test_not_an_object(self, config):
        with pytest.raises(ValidationError):
            validate_link_config(config)

    def test_empty_country_codes(self):
        with pytest.raises(ValidationError):
            validate_link_config({**self.CONFIG, 'country_codes': []})

    def test_country_codes_must_be_list(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_link_config({**self.CONFIG, 'country_codes': 'US'})
        assert exc_info.value.field == 'country_codes'


class TestIdentityInput:

    def test_empty_body(self):
        assert validate_identity_input({}) == {}

    def test_collects_supplied_fields(self):
        user_data = validate_identity_input({'name': 'Jane', 'email': 'jane@example.com'})
        assert user_data == {'name': 'Jane', 'email': 'jane@example.com'}

    def test_blank_address_ignored(self):
        user_data = validate_identity_input({'address': {'street': '', 'city': ''}})
        assert 'address' not in user_data

    def test_bad_phone(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_identity_input({'phone': '12'})
        assert exc_info.value.field == 'phone'
