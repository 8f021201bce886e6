'''
**jady**
---------

A stateless HTTP request façade. Describe a request with a `RequestConfig`
(URL, query, body, headers, auth, timeouts, retry and redirect policy, hooks)
and get back a normalized `Response` with its parsed body, timing and the
history of every attempt. The wire exchange is delegated to a transport
adapter; `HttpxAdapter` is the one used by default.

>>> import jady
>>> response = await jady.call(url='https://httpbin.org/get', params={'q': 'jady'})
>>> response.body['args']
{'q': 'jady'}
'''
from jady._cancel import CancelToken
from jady._client import Client, call, create
from jady._config import (
    DEFAULT_CONFIG,
    BasicAuth,
    BearerAuth,
    FileField,
    Hooks,
    RequestConfig,
    TransportOptions,
    merge_config,
)
from jady._dispatch import Dispatcher, dispatch
from jady._errors import (
    ErrorCode,
    InvalidHeaderName,
    InvalidHeaderValue,
    JadyError,
    RequestValidationError,
)
from jady._models import (
    Attempt,
    AttemptError,
    BodyKind,
    ProgressEvent,
    ResolvedRequest,
    Response,
)
from jady._version import __version__
from jady.adapters import HttpxAdapter, ResponseStream

__all__ = [
    'call',
    'create',
    'Client',
    'dispatch',
    'Dispatcher',
    'RequestConfig',
    'Hooks',
    'TransportOptions',
    'BasicAuth',
    'BearerAuth',
    'FileField',
    'DEFAULT_CONFIG',
    'merge_config',
    'Response',
    'Attempt',
    'AttemptError',
    'ResolvedRequest',
    'ProgressEvent',
    'BodyKind',
    'CancelToken',
    'ErrorCode',
    'JadyError',
    'RequestValidationError',
    'InvalidHeaderName',
    'InvalidHeaderValue',
    'HttpxAdapter',
    'ResponseStream',
    '__version__',
]
