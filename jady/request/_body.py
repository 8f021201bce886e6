'''
request body encoding

The payload is classified exactly once into a `BodyKind`, then encoded for
that kind. New payload shapes need a new `BodyKind` member; there is no
catch-all branch.
'''
import dataclasses as dc
import datetime as dt
import json
import math
import os
import secrets
from collections.abc import AsyncIterable, Iterator, Mapping
from typing import Any

import httpx

from jady._config import FileField, RequestConfig
from jady._errors import RequestValidationError
from jady._models import BodyKind, MultipartBody, ResolvedRequest
from jady.request._headers import (
    apply_auth,
    apply_cookie_header,
    normalize_headers,
)
from jady.request._url import format_iso, serialize_params

BODYLESS_METHODS = frozenset({'GET', 'HEAD'})

_JSON_SCALARS = (int, float, bool)


@dc.dataclass(slots=True)
class EncodedBody:
    kind: BodyKind
    content: Any
    headers: dict[str, str]


def is_file_like(value: Any) -> bool:
    return callable(getattr(value, 'read', None))


def classify_payload(data: Any) -> BodyKind:
    '''
    Resolve a `data` payload to its `BodyKind`, in a fixed order.

    Parameters
    ----------
    data : Any

    Returns
    -------
    BodyKind

    Raises
    ------
    RequestValidationError
        If the payload type is not one of the supported shapes.
    '''
    if data is None:
        return BodyKind.NONE
    if isinstance(data, httpx.QueryParams):
        return BodyKind.NATIVE_FORM
    if isinstance(data, str):
        return BodyKind.TEXT
    if isinstance(data, (bytes, bytearray, memoryview)):
        return BodyKind.BINARY
    if isinstance(data, (Mapping, list, tuple)) or isinstance(data, _JSON_SCALARS):
        return BodyKind.JSON
    if is_file_like(data) or isinstance(data, (Iterator, AsyncIterable)):
        return BodyKind.STREAM
    raise RequestValidationError(f'Unsupported request body type: {type(data).__name__}')


def _jsonable(value: Any, active: set[int]) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dt.date):
        return format_iso(value)
    if isinstance(value, (Mapping, list, tuple)):
        marker = id(value)
        if marker in active:
            raise ValueError('Circular reference detected')
        active.add(marker)
        try:
            if isinstance(value, Mapping):
                return {key: _jsonable(item, active) for key, item in value.items()}
            return [_jsonable(item, active) for item in value]
        finally:
            active.discard(marker)
    return value


def encode_json(data: Any, default=None) -> str:
    '''
    Serialize `data` as compact JSON.

    Non-finite floats become null and dates use ISO-8601, matching what other
    jady bindings put on the wire.

    Raises
    ------
    RequestValidationError
        If the payload cannot be serialized (circular or unsupported values).
    '''
    try:
        return json.dumps(
            _jsonable(data, set()),
            default=default,
            separators=(',', ':'),
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as exc:
        raise RequestValidationError(f'Request data is not JSON serializable: {exc}') from exc


def _form_field_values(value: Any) -> list[str]:
    items = value if isinstance(value, (list, tuple)) else [value]
    values = []
    for item in items:
        if item is None:
            continue
        if isinstance(item, bool):
            values.append('true' if item else 'false')
        elif isinstance(item, dt.date):
            values.append(format_iso(item))
        elif isinstance(item, Mapping):
            values.append(encode_json(item))
        else:
            values.append(str(item))
    return values


def _file_part(name: str, value: Any) -> tuple[str, Any, str | None]:
    if isinstance(value, Mapping):
        value = FileField(
            file=value.get('file'),
            filename=value.get('filename'),
            content_type=value.get('content_type') or value.get('contentType'),
        )
    if isinstance(value, FileField):
        filename = value.filename or _guess_filename(value.file, name)
        return filename, value.file, value.content_type
    if isinstance(value, (bytes, bytearray, memoryview)) or is_file_like(value):
        return _guess_filename(value, name), value, None
    raise RequestValidationError(
        f'Unsupported file value for {name!r}: {type(value).__name__}'
    )


def _guess_filename(fileobj: Any, fallback: str) -> str:
    name = getattr(fileobj, 'name', None)
    if isinstance(name, str) and name and not name.startswith('<'):
        return os.path.basename(name)
    return fallback


def encode_multipart(data: Any, files: Mapping[str, Any]) -> MultipartBody:
    if data is not None and not isinstance(data, Mapping):
        raise RequestValidationError('data must be a plain mapping when using files')

    fields = []
    for name, value in (data or {}).items():
        fields.extend((name, text) for text in _form_field_values(value))

    parts = []
    for name, value in files.items():
        items = value if isinstance(value, (list, tuple)) else [value]
        parts.extend(
            (name, _file_part(name, item))
            for item in items if item is not None
        )

    return MultipartBody(
        boundary=secrets.token_hex(16),
        fields=tuple(fields),
        files=tuple(parts),
    )


def encode_body(config: RequestConfig, headers: dict[str, str]) -> EncodedBody:
    '''
    Encode the request payload and infer its content type.

    Parameters
    ----------
    config : RequestConfig
    headers : dict[str, str]
        Normalized (lowercase) headers; not mutated.

    Returns
    -------
    EncodedBody
    '''
    headers = dict(headers)
    method = (config.method or 'GET').upper()
    data = config.data

    if method in BODYLESS_METHODS:
        return EncodedBody(BodyKind.NONE, None, headers)

    if config.files:
        body = encode_multipart(data, config.files)
        headers['content-type'] = f'multipart/form-data; boundary={body.boundary}'
        return EncodedBody(BodyKind.MULTIPART, body, headers)

    kind = classify_payload(data)
    content_type = headers.get('content-type')

    if kind is BodyKind.NONE:
        return EncodedBody(kind, None, headers)

    if kind is BodyKind.JSON:
        if (
            isinstance(data, Mapping)
            and content_type
            and 'application/x-www-form-urlencoded' in content_type.lower()
        ):
            form = serialize_params(
                data,
                config.params_array_format or 'repeat',
                config.params_serializer,
            )
            return EncodedBody(BodyKind.FORM, form, headers)
        headers.setdefault('content-type', 'application/json')
        return EncodedBody(kind, encode_json(data, config.json_default), headers)

    if kind is BodyKind.NATIVE_FORM:
        return EncodedBody(kind, data, headers)

    if kind is BodyKind.TEXT:
        headers.setdefault('content-type', 'text/plain; charset=utf-8')
        return EncodedBody(kind, data, headers)

    if kind is BodyKind.BINARY:
        headers.setdefault('content-type', 'application/octet-stream')
        return EncodedBody(kind, bytes(data), headers)

    if kind is BodyKind.STREAM:
        headers.setdefault('content-type', 'application/octet-stream')
        return EncodedBody(kind, data, headers)

    raise RequestValidationError(f'Unhandled body kind: {kind}')


def resolve_request(config: RequestConfig) -> ResolvedRequest:
    '''
    Build the adapter-facing request for one attempt.

    `config.url` must already be final (base URL, path and params applied).
    '''
    headers = normalize_headers(config.headers)
    encoded = encode_body(config, headers)
    headers = apply_cookie_header(encoded.headers, config.cookies)
    headers = apply_auth(headers, config.auth)

    return ResolvedRequest(
        url=config.url or '',
        method=(config.method or 'GET').upper(),
        headers=headers,
        body_kind=encoded.kind,
        body=encoded.content,
        config=config,
    )
