import datetime as dt

import pytest

from jady import (
    BasicAuth,
    BearerAuth,
    InvalidHeaderName,
    InvalidHeaderValue,
    RequestConfig,
    RequestValidationError,
)
from jady.request import (
    apply_auth,
    apply_cookie_header,
    coerce_auth,
    http_date,
    normalize_headers,
    resolve_xsrf_header,
)


class TestNormalizeHeaders:
    def test_names_are_lowercased(self):
        assert normalize_headers({'X-Request-ID': 'abc', 'Accept': '*/*'}) == {
            'x-request-id': 'abc',
            'accept': '*/*',
        }

    def test_value_formatting(self):
        when = dt.datetime(2023, 1, 1, tzinfo=dt.timezone.utc)
        headers = normalize_headers({
            'x-list': ['a', None, 'b'],
            'x-flag': False,
            'x-count': 3,
            'if-modified-since': when,
            'x-skip': None,
        })
        assert headers == {
            'x-list': 'a, b',
            'x-flag': 'false',
            'x-count': '3',
            'if-modified-since': 'Sun, 01 Jan 2023 00:00:00 GMT',
        }

    @pytest.mark.parametrize('name', ['bad header', 'x:y', '', 'ümlaut'])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidHeaderName):
            normalize_headers({name: 'value'})

    @pytest.mark.parametrize('value', ['a\r\nb', 'line\nbreak', 'carriage\r'])
    def test_invalid_values(self, value):
        with pytest.raises(InvalidHeaderValue):
            normalize_headers({'x-test': value})

    def test_validation_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            normalize_headers({'bad name': 'x'})

    def test_empty(self):
        assert normalize_headers(None) == {}

    def test_none_removes_header_in_any_case(self):
        assert normalize_headers({'accept': 'application/json', 'Accept': None}) == {}
        assert normalize_headers({'X-Trace': '1', 'x-trace': None, 'x-keep': 'y'}) == {'x-keep': 'y'}


def test_http_date_treats_naive_as_utc():
    assert http_date(dt.datetime(2023, 1, 1, 12, 30)) == 'Sun, 01 Jan 2023 12:30:00 GMT'


class TestAuth:
    def test_basic(self):
        headers = apply_auth({}, BasicAuth('user', 'pass'))
        assert headers['authorization'] == 'Basic dXNlcjpwYXNz'

    def test_bearer_from_mapping(self):
        headers = apply_auth({}, {'bearer': 'token-1'})
        assert headers['authorization'] == 'Bearer token-1'

    def test_manual_header_wins(self):
        headers = apply_auth({'authorization': 'Custom x'}, BearerAuth('token-1'))
        assert headers['authorization'] == 'Custom x'

    def test_basic_and_bearer_are_rejected(self):
        with pytest.raises(RequestValidationError, match='Cannot use both Basic and Bearer'):
            coerce_auth({'username': 'u', 'password': 'p', 'bearer': 't'})

    def test_empty_mapping_means_no_auth(self):
        assert coerce_auth({}) is None


class TestCookiesAndXsrf:
    def test_cookie_header_rendered(self):
        headers = apply_cookie_header({}, {'session': 'abc', 'theme': 'dark'})
        assert headers['cookie'] == 'session=abc; theme=dark'

    def test_explicit_cookie_header_wins(self):
        headers = apply_cookie_header({'cookie': 'a=1'}, {'session': 'abc'})
        assert headers['cookie'] == 'a=1'

    def test_xsrf_token_copied_from_cookie(self):
        config = RequestConfig(
            cookies={'XSRF-TOKEN': 'tok'},
            xsrf_cookie_name='XSRF-TOKEN',
            xsrf_header_name='X-XSRF-TOKEN',
        )
        assert resolve_xsrf_header({}, config) == {'x-xsrf-token': 'tok'}

    def test_xsrf_requires_both_names(self):
        config = RequestConfig(cookies={'XSRF-TOKEN': 'tok'}, xsrf_cookie_name='XSRF-TOKEN')
        assert resolve_xsrf_header({}, config) == {}

    def test_xsrf_missing_cookie(self):
        config = RequestConfig(
            cookies={'other': 'x'},
            xsrf_cookie_name='XSRF-TOKEN',
            xsrf_header_name='X-XSRF-TOKEN',
        )
        assert resolve_xsrf_header({}, config) == {}
