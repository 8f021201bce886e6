import datetime as dt
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, quote_plus

import httpx

from jady._config import RequestConfig
from jady._errors import RequestValidationError

_ABSOLUTE_URL = re.compile(r'^([a-z][a-z\d+\-.]*:)?//', re.IGNORECASE)

# characters encodeURIComponent leaves alone
_COMPONENT_SAFE = "-_.!~*'()"
_QUERY_SAFE = _COMPONENT_SAFE + ':$,[]'


def format_iso(value: dt.date) -> str:
    '''
    ISO-8601 form used for query, path and body values.

    Datetimes are rendered in UTC with millisecond precision and a trailing
    `Z`; naive datetimes are taken as UTC. Plain dates stay `YYYY-MM-DD`.
    '''
    if not isinstance(value, dt.datetime):
        return value.isoformat()
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc)
    millis = value.microsecond // 1000
    return value.strftime('%Y-%m-%dT%H:%M:%S') + f'.{millis:03d}Z'


def is_absolute_url(url: str) -> bool:
    return bool(_ABSOLUTE_URL.match(url))


def combine_urls(base_url: str, relative_url: str) -> str:
    if not relative_url:
        return base_url
    return base_url.rstrip('/') + '/' + relative_url.lstrip('/')


def build_full_path(base_url: str | None, url: str | None) -> str:
    url = url or ''
    if base_url and not is_absolute_url(url):
        return combine_urls(base_url, url)
    return url


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, dt.date):
        return format_iso(value)
    return str(value)


def substitute_path(url: str, path: Mapping[str, Any] | None) -> str:
    '''
    Replace `{name}` and `:name` placeholders with encoded values.

    Parameters
    ----------
    url : str
    path : Mapping[str, Any] | None

    Returns
    -------
    str
    '''
    if not path:
        return url
    for name, value in path.items():
        encoded = quote(_stringify(value), safe=_COMPONENT_SAFE)
        pattern = re.compile(r'\{' + re.escape(name) + r'\}|:' + re.escape(name) + r'\b')
        url = pattern.sub(lambda _: encoded, url)
    return url


def _encode(value: str) -> str:
    return quote_plus(value, safe=_QUERY_SAFE)


def _scalar(key: str, value: Any) -> str:
    if isinstance(value, Mapping):
        raise RequestValidationError(f'Nested object in params is not supported: {key}')
    return _stringify(value)


def serialize_params(
    params: Any,
    array_format: str = 'repeat',
    serializer=None,
) -> str:
    '''
    Serialize query parameters into a query string (without the `?`).

    Parameters
    ----------
    params : Mapping | httpx.QueryParams
    array_format : str, optional
        One of `repeat`, `brackets`, `comma` or `index`, by default 'repeat'
    serializer : Callable[[Any], str] | None
        When given it is used verbatim instead of the built-in rules.

    Returns
    -------
    str

    Raises
    ------
    RequestValidationError
        If a value is a nested mapping.
    '''
    if serializer is not None:
        return serializer(params)
    if isinstance(params, httpx.QueryParams):
        return str(params)
    if not isinstance(params, Mapping):
        raise RequestValidationError(
            f'params must be a mapping, got {type(params).__name__}'
        )

    parts: list[str] = []
    for key, value in params.items():
        if value is None:
            continue

        if not isinstance(value, (list, tuple)):
            parts.append(f'{_encode(key)}={_encode(_scalar(key, value))}')
            continue

        items = [_scalar(key, item) for item in value if item is not None]
        if not items:
            continue

        if array_format == 'comma':
            parts.append(f'{_encode(key)}={_encode(",".join(items))}')
        elif array_format == 'brackets':
            parts.extend(f'{_encode(key + "[]")}={_encode(item)}' for item in items)
        elif array_format == 'index':
            parts.extend(
                f'{_encode(f"{key}[{index}]")}={_encode(item)}'
                for index, item in enumerate(items)
            )
        else:
            parts.extend(f'{_encode(key)}={_encode(item)}' for item in items)

    return '&'.join(parts)


def append_query(url: str, query: str) -> str:
    if not query:
        return url
    url, hashmark, fragment = url.partition('#')
    separator = '&' if '?' in url else '?'
    return f'{url}{separator}{query}{hashmark}{fragment}'


def build_url(config: RequestConfig) -> str:
    '''
    Build the final request URL from `base_url`, `url`, `path` and `params`.

    Parameters
    ----------
    config : RequestConfig

    Returns
    -------
    str
    '''
    url = build_full_path(config.base_url, config.url)
    url = substitute_path(url, config.path)

    if config.params is None:
        return url

    query = serialize_params(
        config.params,
        config.params_array_format or 'repeat',
        config.params_serializer,
    )
    return append_query(url, query)
