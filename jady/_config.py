'''
request configuration records and the config merger

Every field of the config records defaults to None, meaning "unset". Concrete
defaults live in `DEFAULT_CONFIG` and are layered in by `merge_config` at
dispatch entry, so a partially filled config never hides a default.
'''
from __future__ import annotations

import dataclasses as dc
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Literal, Union

if TYPE_CHECKING:
    from jady._cancel import CancelToken
    from jady._models import ProgressEvent, ResolvedRequest, Response


Method = Literal[
    'GET', 'DELETE', 'HEAD', 'OPTIONS', 'POST', 'PUT', 'PATCH',
    'PURGE', 'LINK', 'UNLINK',
]
ResponseType = Literal['auto', 'json', 'text', 'bytes', 'stream']
ParamsArrayFormat = Literal['repeat', 'brackets', 'comma', 'index']
RedirectMode = Literal['follow', 'error', 'manual']

RESPONSE_TYPES = ('auto', 'json', 'text', 'bytes', 'stream')
PARAMS_ARRAY_FORMATS = ('repeat', 'brackets', 'comma', 'index')
REDIRECT_MODES = ('follow', 'error', 'manual')

Hook = Callable[..., Any]
HookChain = Union[Hook, Sequence[Hook], None]
Adapter = Callable[['ResolvedRequest'], Awaitable['Response']]


@dc.dataclass(slots=True, frozen=True)
class BasicAuth:
    username: str
    password: str = ''


@dc.dataclass(slots=True, frozen=True)
class BearerAuth:
    bearer: str


@dc.dataclass(slots=True)
class FileField:
    '''
    One multipart file part with explicit metadata.
    '''
    file: Any
    filename: str | None = None
    content_type: str | None = None


@dc.dataclass(slots=True)
class Hooks:
    '''
    Callbacks run at fixed points of the dispatch pipeline.

    Each field is a callable or an ordered sequence of callables. Sync and
    async callables are both accepted; results are awaited before the
    pipeline moves on.
    '''
    before_request: HookChain = None
    after_response: HookChain = None
    before_retry: HookChain = None
    before_redirect: HookChain = None
    before_error: HookChain = None


@dc.dataclass(slots=True)
class TransportOptions:
    '''
    Options consumed by the transport adapter rather than by the engine.
    '''
    http2: bool | None = None
    verify: bool | None = None
    trust_env: bool | None = None
    proxy: str | Literal[False] | None = None
    connect_timeout: float | None = None
    write_timeout: float | None = None
    max_content_length: int | None = None
    block_private_ip: bool | None = None
    local_address: str | None = None
    connect_retries: int | None = None


@dc.dataclass(slots=True, kw_only=True)
class RequestConfig:
    '''
    Declarative description of one request.

    Durations are seconds. A timeout of 0 disables that timeout.
    '''
    url: str | None = None
    base_url: str | None = None
    method: str | None = None
    path: Mapping[str, Any] | None = None

    params: Any = None
    params_array_format: ParamsArrayFormat | None = None
    params_serializer: Callable[[Any], str] | None = None

    data: Any = None
    files: Mapping[str, Any] | None = None

    headers: Mapping[str, Any] | None = None
    cookies: Mapping[str, str] | None = None

    timeout: float | None = None
    total_timeout: float | None = None

    auth: BasicAuth | BearerAuth | Mapping[str, Any] | None = None

    redirect: RedirectMode | None = None
    max_redirects: int | None = None
    retry: int | None = None
    retry_delay: float | Callable[[int, Exception], float] | None = None
    retry_condition: Callable[[Exception, int], Any] | None = None
    validate_status: Callable[[int], bool] | None = None

    response_type: ResponseType | None = None
    response_encoding: str | None = None
    save_raw_body: bool | None = None
    decompress: bool | None = None
    json_default: Callable[[Any], Any] | None = None
    json_object_hook: Callable[[dict], Any] | None = None
    json_fallback: bool | None = None

    adapter: Adapter | None = None
    request_id: str | None = None
    xsrf_cookie_name: str | None = None
    xsrf_header_name: str | None = None
    cancel_token: CancelToken | None = None

    on_upload_progress: Callable[[ProgressEvent], None] | None = None
    on_download_progress: Callable[[ProgressEvent], None] | None = None

    meta: Mapping[str, Any] | None = None
    hooks: Hooks | None = None
    transport_options: TransportOptions | None = None


def default_validate_status(status: int) -> bool:
    return 200 <= status < 300


DEFAULT_CONFIG = RequestConfig(
    method='GET',
    timeout=30.0,
    total_timeout=0,
    params_array_format='repeat',
    redirect='follow',
    max_redirects=10,
    retry=0,
    response_type='auto',
    save_raw_body=False,
    decompress=True,
    json_fallback=False,
    validate_status=default_validate_status,
    headers={'accept': 'application/json, text/plain, */*'},
    transport_options=TransportOptions(
        http2=True,
        verify=True,
        trust_env=True,
        connect_retries=0,
        block_private_ip=False,
    ),
)


_RECORD_TYPES = (RequestConfig, Hooks, TransportOptions)


def _is_plain_mapping(value: Any) -> bool:
    return type(value) is dict


def _merge_dicts(base: dict, override: Mapping) -> dict:
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if _is_plain_mapping(current) and _is_plain_mapping(value):
            result[key] = _merge_dicts(current, value)
        elif _is_plain_mapping(value):
            result[key] = _merge_dicts({}, value)
        else:
            result[key] = value
    return result


def _merge_value(base: Any, override: Any) -> Any:
    if _is_plain_mapping(base) and _is_plain_mapping(override):
        return _merge_dicts(base, override)
    if _is_plain_mapping(override):
        return _merge_dicts({}, override)
    if isinstance(override, _RECORD_TYPES) and type(base) is type(override):
        return _merge_records(base, override)
    if isinstance(override, _RECORD_TYPES):
        return _merge_records(type(override)(), override)
    return override


def _merge_records(base, override):
    changes = {}
    for field in dc.fields(override):
        value = getattr(override, field.name)
        if value is None:
            continue
        changes[field.name] = _merge_value(getattr(base, field.name), value)
    return dc.replace(base, **changes)


def _as_config(value: RequestConfig | Mapping[str, Any] | None) -> RequestConfig:
    if value is None:
        return RequestConfig()
    if isinstance(value, RequestConfig):
        return value
    if isinstance(value, Mapping):
        options = dict(value)
        if isinstance(options.get('hooks'), Mapping):
            options['hooks'] = Hooks(**options['hooks'])
        if isinstance(options.get('transport_options'), Mapping):
            options['transport_options'] = TransportOptions(**options['transport_options'])
        return RequestConfig(**options)
    raise TypeError(f'Expected RequestConfig or mapping, got {type(value).__name__}')


def merge_config(
    base: RequestConfig | Mapping[str, Any] | None,
    override: RequestConfig | Mapping[str, Any] | None,
) -> RequestConfig:
    '''
    Deep merge `override` onto `base` and return a new config.

    Plain dicts and config records are merged key by key; every other value
    (lists, callables, auth records, tokens, opaque objects) replaces the base
    value wholesale. Unset (None) fields of `override` keep the base value.
    Neither argument is mutated.

    Parameters
    ----------
    base : RequestConfig | Mapping[str, Any] | None
    override : RequestConfig | Mapping[str, Any] | None

    Returns
    -------
    RequestConfig
    '''
    return _merge_records(_as_config(base), _as_config(override))


def iter_hooks(hooks: HookChain) -> list[Hook]:
    if hooks is None:
        return []
    if callable(hooks):
        return [hooks]
    return list(hooks)
