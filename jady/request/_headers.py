import base64
import datetime as dt
import re
from collections.abc import Mapping
from email.utils import format_datetime
from typing import Any

from jady._config import BasicAuth, BearerAuth, RequestConfig
from jady._errors import InvalidHeaderName, InvalidHeaderValue, RequestValidationError

_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def http_date(value: dt.datetime) -> str:
    '''
    RFC 7231 HTTP-date, e.g. `Sun, 01 Jan 2023 00:00:00 GMT`.
    '''
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return format_datetime(value.astimezone(dt.timezone.utc), usegmt=True)


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, dt.datetime):
        return http_date(value)
    if isinstance(value, (list, tuple)):
        return ', '.join(_header_value(item) for item in value if item is not None)
    return str(value)


def normalize_headers(raw: Mapping[str, Any] | None) -> dict[str, str]:
    '''
    Lowercase header names and stringify their values.

    A None value drops the header, including any earlier entry under the
    same name in a different case.

    Parameters
    ----------
    raw : Mapping[str, Any] | None

    Returns
    -------
    dict[str, str]

    Raises
    ------
    InvalidHeaderName
        If a name has characters outside the RFC 7230 token set.
    InvalidHeaderValue
        If a value contains a carriage return or line feed.
    '''
    headers: dict[str, str] = {}
    if not raw:
        return headers

    for name, value in raw.items():
        if not isinstance(name, str) or not _TOKEN.match(name):
            raise InvalidHeaderName(f'Invalid header name: {name!r}')
        if value is None:
            headers.pop(name.lower(), None)
            continue
        text = _header_value(value)
        if '\r' in text or '\n' in text:
            raise InvalidHeaderValue(f'Invalid header value for {name!r}')
        headers[name.lower()] = text

    return headers


def coerce_auth(auth: Any) -> BasicAuth | BearerAuth | None:
    '''
    Turn an auth record or mapping into `BasicAuth` / `BearerAuth`.

    Raises
    ------
    RequestValidationError
        If both basic and bearer credentials are given.
    '''
    if auth is None or isinstance(auth, (BasicAuth, BearerAuth)):
        return auth
    if not isinstance(auth, Mapping):
        raise RequestValidationError(f'Unsupported auth type: {type(auth).__name__}')

    has_basic = auth.get('username') is not None
    has_bearer = auth.get('bearer') is not None
    if has_basic and has_bearer:
        raise RequestValidationError('Cannot use both Basic and Bearer authentication')
    if has_basic:
        return BasicAuth(str(auth['username']), str(auth.get('password') or ''))
    if has_bearer:
        return BearerAuth(str(auth['bearer']))
    return None


def apply_auth(headers: dict[str, str], auth: Any) -> dict[str, str]:
    '''
    Add an `authorization` header unless one is already present.
    '''
    auth = coerce_auth(auth)
    if auth is None or 'authorization' in headers:
        return headers

    if isinstance(auth, BasicAuth):
        token = base64.b64encode(f'{auth.username}:{auth.password}'.encode('utf-8'))
        headers['authorization'] = f'Basic {token.decode("ascii")}'
    else:
        headers['authorization'] = f'Bearer {auth.bearer}'
    return headers


def apply_cookie_header(headers: dict[str, str], cookies: Mapping[str, str] | None) -> dict[str, str]:
    if not cookies or 'cookie' in headers:
        return headers
    headers['cookie'] = '; '.join(f'{name}={value}' for name, value in cookies.items())
    return headers


def resolve_xsrf_header(headers: dict[str, str], config: RequestConfig) -> dict[str, str]:
    '''
    Copy the XSRF token from the cookie store into its header when both the
    cookie name and the header name are configured.
    '''
    if not (config.xsrf_cookie_name and config.xsrf_header_name and config.cookies):
        return headers

    header_name = config.xsrf_header_name.lower()
    token = config.cookies.get(config.xsrf_cookie_name)
    if token and header_name not in headers:
        headers[header_name] = str(token)
    return headers
