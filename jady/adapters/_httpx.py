'''
reference transport adapter built on httpx

The adapter sends each `ResolvedRequest` straight through an httpx transport,
skipping `httpx.AsyncClient` so that no cookie jar or client-level redirect
handling leaks state between calls.
'''
import asyncio
import json
import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable

import httpcore
import httpx

from jady._config import RequestConfig, TransportOptions
from jady._errors import ErrorCode, JadyError
from jady._models import BodyKind, ProgressEvent, ResolvedRequest, Response
from jady._version import __version__
from jady.adapters._transport import JadyTransport, URLRejectedError
from jady.request._body import is_file_like

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_USER_AGENT = f'jady-python/{__version__}'

_TIMEOUT_ERRORS = (
    httpx.TimeoutException,
    httpcore.TimeoutException,
    TimeoutError,
)
_TRANSPORT_ERRORS = (
    httpx.HTTPError,
    httpx.StreamError,
    httpcore.NetworkError,
    httpcore.ProtocolError,
    httpcore.ProxyError,
    URLRejectedError,
    ConnectionError,
)


def _transport_error(exc: BaseException, config: RequestConfig) -> JadyError:
    if isinstance(exc, _TIMEOUT_ERRORS):
        code = ErrorCode.ETIMEDOUT
    elif isinstance(exc, httpx.DecodingError):
        code = ErrorCode.EPARSE
    else:
        code = ErrorCode.ENETWORK
    return JadyError(str(exc) or type(exc).__name__, code, config=config)


def collect_headers(headers: httpx.Headers) -> dict[str, str | list[str]]:
    '''
    Flatten response headers: lowercase keys, `set-cookie` as an ordered
    list, every other repeated header joined with ", ".

    Parameters
    ----------
    headers : httpx.Headers

    Returns
    -------
    dict[str, str | list[str]]
    '''
    result: dict[str, str | list[str]] = {}
    for key, value in headers.multi_items():
        key = key.lower()
        if key == 'set-cookie':
            result.setdefault('set-cookie', []).append(value)
        elif key in result:
            result[key] = f'{result[key]}, {value}'
        else:
            result[key] = value
    return result


def content_length(headers: httpx.Headers) -> int | None:
    try:
        return int(headers.get('content-length'))
    except (TypeError, ValueError):
        return None


async def _read_chunks(fileobj) -> AsyncIterator[bytes]:
    while chunk := await asyncio.to_thread(fileobj.read, CHUNK_SIZE):
        yield chunk.encode('utf-8') if isinstance(chunk, str) else chunk


async def _iterate_async(iterable: Iterable) -> AsyncIterator[bytes]:
    for chunk in iterable:
        yield chunk.encode('utf-8') if isinstance(chunk, str) else bytes(chunk)


def as_async_stream(body) -> AsyncIterable[bytes]:
    if isinstance(body, AsyncIterable):
        return body
    if is_file_like(body):
        return _read_chunks(body)
    return _iterate_async(body)


class _UploadProgressStream(httpx.AsyncByteStream):
    def __init__(
        self,
        stream: httpx.AsyncByteStream,
        total: int | None,
        callback: Callable[[ProgressEvent], None],
    ) -> None:
        self._stream = stream
        self._total = total
        self._callback = callback

    async def __aiter__(self) -> AsyncIterator[bytes]:
        loaded = 0
        async for chunk in self._stream:
            loaded += len(chunk)
            self._callback(ProgressEvent(loaded=loaded, total=self._total))
            yield chunk

    async def aclose(self) -> None:
        await self._stream.aclose()


def _group_fields(fields: tuple[tuple[str, str], ...]) -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {}
    for name, value in fields:
        grouped.setdefault(name, []).append(value)
    return grouped


def build_httpx_request(request: ResolvedRequest, options: TransportOptions) -> httpx.Request:
    '''
    Translate a `ResolvedRequest` into an `httpx.Request`.

    Parameters
    ----------
    request : ResolvedRequest
    options : TransportOptions

    Returns
    -------
    httpx.Request
    '''
    config = request.config
    headers = dict(request.headers)
    headers.setdefault('user-agent', DEFAULT_USER_AGENT)
    if config.decompress is not False:
        headers.setdefault('accept-encoding', 'gzip, deflate')

    kwargs = {}
    kind, body = request.body_kind, request.body
    if kind is BodyKind.MULTIPART:
        kwargs['data'] = _group_fields(body.fields)
        kwargs['files'] = list(body.files)
    elif kind is BodyKind.NATIVE_FORM:
        headers.setdefault('content-type', 'application/x-www-form-urlencoded')
        kwargs['content'] = str(body)
    elif kind is BodyKind.STREAM:
        kwargs['content'] = as_async_stream(body)
    elif kind is not BodyKind.NONE:
        kwargs['content'] = body

    timeout = config.timeout or None
    timeouts = httpx.Timeout(
        timeout,
        connect=options.connect_timeout or timeout,
        write=options.write_timeout or timeout,
    )

    outgoing = httpx.Request(
        request.method,
        request.url,
        headers=headers,
        extensions={'timeout': timeouts.as_dict()},
        **kwargs,
    )

    if config.on_upload_progress is not None:
        outgoing.stream = _UploadProgressStream(
            outgoing.stream,
            content_length(outgoing.headers),
            config.on_upload_progress,
        )
    return outgoing


class ResponseStream:
    '''
    Async iterator over a response body. Chunks are yielded as they arrive
    and never buffered; the exchange is closed once the body is exhausted or
    `aclose()` is called.
    '''

    def __init__(
        self,
        response: httpx.Response,
        config: RequestConfig,
        max_content_length: int | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._response = response
        self._config = config
        self._max_content_length = max_content_length
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in iter_body(self._response, self._config, self._max_content_length):
                yield chunk
        except _TRANSPORT_ERRORS as exc:
            raise _transport_error(exc, self._config) from exc
        finally:
            await self.aclose()

    async def aread(self) -> bytes:
        return b''.join([chunk async for chunk in self])

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
        if self._on_close is not None:
            await self._on_close()

    async def __aenter__(self) -> 'ResponseStream':
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()


async def iter_body(
    response: httpx.Response,
    config: RequestConfig,
    max_content_length: int | None,
) -> AsyncIterator[bytes]:
    '''
    Yield body chunks, decompressed unless `decompress` is False, reporting
    download progress and enforcing `max_content_length`.
    '''
    total = content_length(response.headers)
    source = response.aiter_raw() if config.decompress is False else response.aiter_bytes()
    # progress counts bytes off the wire, before decompression
    baseline = response.num_bytes_downloaded
    received = 0
    async for chunk in source:
        received += len(chunk)
        if max_content_length and received > max_content_length:
            raise JadyError(
                f'Response body exceeds max_content_length {max_content_length}',
                ErrorCode.ENETWORK,
                config=config,
            )
        if config.on_download_progress is not None:
            config.on_download_progress(ProgressEvent(
                loaded=(response.num_bytes_downloaded - baseline) or received,
                total=total,
            ))
        yield chunk


def _charset(content_type: str) -> str | None:
    for part in content_type.split(';')[1:]:
        key, _, value = part.strip().partition('=')
        if key.lower() == 'charset' and value:
            return value.strip('"\' ')
    return None


def decode_text(content: bytes, content_type: str, config: RequestConfig) -> str:
    encoding = config.response_encoding or _charset(content_type) or 'utf-8'
    try:
        return content.decode(encoding, errors='replace')
    except LookupError:
        logger.debug(f'Unknown response encoding {encoding!r}, decoding as utf-8')
        return content.decode('utf-8', errors='replace')


def is_json_content_type(content_type: str) -> bool:
    mime = content_type.split(';', 1)[0].strip().lower()
    return mime == 'application/json' or mime.endswith('+json')


def is_text_content_type(content_type: str) -> bool:
    mime = content_type.split(';', 1)[0].strip().lower()
    return mime.startswith('text/') or 'xml' in mime


def parse_json(text: str, config: RequestConfig):
    '''
    Parse a JSON body; a leading BOM is stripped and an empty body is None.

    Raises
    ------
    JadyError
        EPARSE, unless `json_fallback` is set, in which case the text is
        returned instead.
    '''
    cleaned = text.lstrip('\ufeff').strip()
    if not cleaned:
        return None
    try:
        return json.loads(cleaned, object_hook=config.json_object_hook)
    except ValueError as exc:
        if config.json_fallback:
            return text
        raise JadyError(f'JSON Parse Error: {exc}', ErrorCode.EPARSE, config=config) from exc


def decode_body(content: bytes, content_type: str, config: RequestConfig):
    '''
    Shape a fully read body according to `response_type`.

    Returns
    -------
    tuple[Any, str | bytes]
        the body and the undecoded text (or bytes for binary bodies)
    '''
    response_type = config.response_type or 'auto'
    if response_type == 'bytes':
        return content, content

    if response_type == 'json' or (response_type == 'auto' and is_json_content_type(content_type)):
        text = decode_text(content, content_type, config)
        return parse_json(text, config), text

    if response_type == 'text' or (response_type == 'auto' and is_text_content_type(content_type)):
        text = decode_text(content, content_type, config)
        return text, text

    if response_type == 'auto' and config.response_encoding:
        text = decode_text(content, content_type, config)
        return text, text

    return content, content


class HttpxAdapter:
    '''
    Transport adapter performing one HTTP exchange with httpx.

    Parameters
    ----------
    transport : httpx.AsyncBaseTransport | None, optional
        Transport to send through. It is reused and never closed by the
        adapter. When None, a `JadyTransport` is opened for each exchange and
        closed with it.
    '''

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    def __repr__(self) -> str:
        return f'HttpxAdapter(transport={self._transport!r})'

    async def __call__(self, request: ResolvedRequest) -> Response:
        config = request.config
        options = config.transport_options or TransportOptions()
        started = time.monotonic()

        outgoing = build_httpx_request(request, options)
        transport = self._transport or JadyTransport.from_options(outgoing.url, options)
        on_close = transport.aclose if self._transport is None else None

        raw: httpx.Response | None = None
        streaming = False
        try:
            raw = await transport.handle_async_request(outgoing)
            raw.request = outgoing

            status = raw.status_code
            headers = collect_headers(raw.headers)
            max_length = options.max_content_length
            declared = content_length(raw.headers)
            if max_length and declared is not None and declared > max_length:
                raise JadyError(
                    f'Content-Length {declared} exceeds max_content_length {max_length}',
                    ErrorCode.ENETWORK,
                    config=config,
                )

            body = raw_body = None
            if status == 204 or request.method == 'HEAD':
                pass
            elif config.response_type == 'stream':
                body = ResponseStream(raw, config, max_length, on_close)
                streaming = True
            else:
                content = b''.join([
                    chunk async for chunk in iter_body(raw, config, max_length)
                ])
                body, raw_body = decode_body(
                    content,
                    str(headers.get('content-type', '')),
                    config,
                )

            return Response(
                status=status,
                status_text=raw.reason_phrase or httpx.codes.get_reason_phrase(status),
                url=str(outgoing.url),
                headers=headers,
                body=body,
                raw_body=raw_body if config.save_raw_body else None,
                duration=time.monotonic() - started,
                config=config,
            )
        except JadyError:
            raise
        except _TRANSPORT_ERRORS as exc:
            raise _transport_error(exc, config) from exc
        finally:
            if not streaming:
                if raw is not None:
                    await raw.aclose()
                if on_close is not None:
                    await on_close()
