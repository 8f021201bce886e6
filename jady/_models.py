import dataclasses as dc
import enum
from collections.abc import Mapping
from typing import Any

from jady._config import RequestConfig


class BodyKind(enum.Enum):
    '''
    The closed set of request payload shapes the body encoder produces.
    '''
    NONE = 'none'
    MULTIPART = 'multipart'
    JSON = 'json'
    FORM = 'form'
    NATIVE_FORM = 'native_form'
    TEXT = 'text'
    BINARY = 'binary'
    STREAM = 'stream'


@dc.dataclass(slots=True, frozen=True)
class MultipartBody:
    '''
    Multipart payload ready for the transport.

    `fields` holds `(name, value)` pairs and `files` holds
    `(name, (filename, fileobj, content_type))` pairs, both in order.
    '''
    boundary: str
    fields: tuple[tuple[str, str], ...] = ()
    files: tuple[tuple[str, tuple[str, Any, str | None]], ...] = ()


@dc.dataclass(slots=True, frozen=True)
class ResolvedRequest:
    '''
    Adapter-facing request for a single attempt.
    '''
    url: str
    method: str
    headers: dict[str, str]
    body_kind: BodyKind = BodyKind.NONE
    body: Any = None
    config: RequestConfig = dc.field(default_factory=RequestConfig)


@dc.dataclass(slots=True, frozen=True)
class ProgressEvent:
    loaded: int
    total: int | None = None


@dc.dataclass(slots=True)
class AttemptError:
    code: str
    message: str


@dc.dataclass(slots=True)
class Attempt:
    '''
    The recorded outcome of one transport invocation.
    '''
    url: str
    duration: float
    status: int | None = None
    status_text: str | None = None
    headers: dict[str, str | list[str]] | None = None
    error: AttemptError | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {'url': self.url, 'duration': self.duration}
        if self.status is not None:
            data['status'] = self.status
            data['statusText'] = self.status_text
            data['headers'] = self.headers
        if self.error is not None:
            data['error'] = {'code': self.error.code, 'message': self.error.message}
        return data


_OMIT = object()


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float)):
        return value
    if isinstance(value, enum.Enum):
        return value.value
    if dc.is_dataclass(value) and not isinstance(value, type):
        data = {}
        for field in dc.fields(value):
            item = _plain(getattr(value, field.name))
            if item is not None and item is not _OMIT:
                data[_camel(field.name)] = item
        return data or _OMIT
    if isinstance(value, Mapping):
        data = {}
        for key, item in value.items():
            item = _plain(item)
            if item is not _OMIT:
                data[str(key)] = item
        return data
    if isinstance(value, (list, tuple)):
        items = [item for item in map(_plain, value) if item is not _OMIT]
        return items if items or not value else _OMIT
    return _OMIT


def plain_config(config: RequestConfig | None) -> dict[str, Any] | None:
    '''
    JSON-safe view of a config: fields in camelCase, unset fields dropped,
    and values with no data representation (callables, adapters, tokens,
    file objects, raw bytes) left out.
    '''
    if config is None:
        return None
    data = _plain(config)
    return {} if data is _OMIT else data


@dc.dataclass(slots=True)
class Response:
    status: int
    status_text: str = ''
    url: str = ''
    headers: dict[str, str | list[str]] = dc.field(default_factory=dict)
    body: Any = None
    raw_body: str | bytes | None = None
    ok: bool = False
    duration: float = 0.0
    total_duration: float = 0.0
    attempts: list[Attempt] = dc.field(default_factory=list)
    config: RequestConfig | None = None

    def header(self, name: str) -> str | list[str] | None:
        return self.headers.get(name.lower())

    def to_dict(self) -> dict[str, Any]:
        '''
        The response in its cross-language wire shape.

        Returns
        -------
        dict[str, Any]
        '''
        data: dict[str, Any] = {
            'status': self.status,
            'statusText': self.status_text,
            'url': self.url,
            'body': self.body,
            'headers': self.headers,
            'ok': self.ok,
            'duration': self.duration,
            'totalDuration': self.total_duration,
            'attempts': [attempt.to_dict() for attempt in self.attempts],
            'config': plain_config(self.config),
        }
        if self.raw_body is not None:
            data['rawBody'] = self.raw_body
        return data
