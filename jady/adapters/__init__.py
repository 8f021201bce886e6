'''
**jady.adapters**
---------

Transport adapters. An adapter is any async callable taking a
`ResolvedRequest` and returning a `Response` for one HTTP exchange; the
dispatch engine never talks to the network itself. `HttpxAdapter` is the
reference adapter and the default used by `jady.call` and `jady.create`.
'''
from jady.adapters._httpx import (
    DEFAULT_USER_AGENT,
    HttpxAdapter,
    ResponseStream,
    build_httpx_request,
    collect_headers,
    decode_body,
)
from jady.adapters._transport import (
    JadyTransport,
    URLRejectedError,
    check_request_url,
    verified_ssl_context,
)

__all__ = [
    'HttpxAdapter',
    'ResponseStream',
    'build_httpx_request',
    'collect_headers',
    'decode_body',
    'JadyTransport',
    'URLRejectedError',
    'check_request_url',
    'verified_ssl_context',
    'DEFAULT_USER_AGENT',
]
