'''
**jady.request**
---------

Pure request builders used by the dispatch engine: URL building, header
normalization and body encoding. Nothing in here performs I/O.
'''
from jady.request._body import (
    EncodedBody,
    classify_payload,
    encode_body,
    encode_json,
    encode_multipart,
    resolve_request,
)
from jady.request._headers import (
    apply_auth,
    apply_cookie_header,
    coerce_auth,
    http_date,
    normalize_headers,
    resolve_xsrf_header,
)
from jady.request._url import (
    append_query,
    build_full_path,
    build_url,
    combine_urls,
    format_iso,
    is_absolute_url,
    serialize_params,
    substitute_path,
)

__all__ = [
    'EncodedBody',
    'classify_payload',
    'encode_body',
    'encode_json',
    'encode_multipart',
    'resolve_request',
    'apply_auth',
    'apply_cookie_header',
    'coerce_auth',
    'http_date',
    'normalize_headers',
    'resolve_xsrf_header',
    'append_query',
    'build_full_path',
    'build_url',
    'combine_urls',
    'format_iso',
    'is_absolute_url',
    'serialize_params',
    'substitute_path',
]
