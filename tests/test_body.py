import datetime as dt
import io
import json

import httpx
import pytest

from jady import BodyKind, FileField, RequestConfig, RequestValidationError
from jady.request import classify_payload, encode_body, encode_json, resolve_request


def encode(headers: dict | None = None, **fields):
    fields.setdefault('method', 'POST')
    return encode_body(RequestConfig(**fields), dict(headers or {}))


class TestClassifyPayload:
    @pytest.mark.parametrize(
        ('payload', 'kind'),
        [
            (None, BodyKind.NONE),
            ({'a': 1}, BodyKind.JSON),
            ([1, 2], BodyKind.JSON),
            (3.5, BodyKind.JSON),
            (True, BodyKind.JSON),
            ('text', BodyKind.TEXT),
            (b'bytes', BodyKind.BINARY),
            (bytearray(b'x'), BodyKind.BINARY),
            (httpx.QueryParams({'a': '1'}), BodyKind.NATIVE_FORM),
            (io.BytesIO(b'data'), BodyKind.STREAM),
            (iter([b'a', b'b']), BodyKind.STREAM),
        ],
    )
    def test_kinds(self, payload, kind):
        assert classify_payload(payload) is kind

    def test_unknown_payload_is_rejected(self):
        with pytest.raises(RequestValidationError):
            classify_payload(object())


class TestEncodeBody:
    @pytest.mark.parametrize('method', ['GET', 'HEAD'])
    def test_bodyless_methods_drop_payload(self, method):
        body = encode(method=method, data={'a': 1})
        assert body.kind is BodyKind.NONE
        assert body.content is None
        assert 'content-type' not in body.headers

    def test_json_default_content_type(self):
        body = encode(data={'name': 'jady', 'tags': ['a']})
        assert body.kind is BodyKind.JSON
        assert body.content == '{"name":"jady","tags":["a"]}'
        assert body.headers['content-type'] == 'application/json'

    def test_json_keeps_explicit_content_type(self):
        body = encode({'content-type': 'application/vnd.api+json'}, data={'a': 1})
        assert body.headers['content-type'] == 'application/vnd.api+json'

    def test_headers_are_not_mutated(self):
        headers = {'accept': '*/*'}
        encode_body(RequestConfig(method='POST', data={'a': 1}), headers)
        assert headers == {'accept': '*/*'}

    def test_form_when_content_type_is_urlencoded(self):
        body = encode(
            {'content-type': 'application/x-www-form-urlencoded'},
            data={'a': 'x y', 'ids': [1, 2]},
            params_array_format='brackets',
        )
        assert body.kind is BodyKind.FORM
        assert body.content == 'a=x+y&ids[]=1&ids[]=2'

    def test_native_form_passes_through_without_header(self):
        params = httpx.QueryParams({'a': '1'})
        body = encode(data=params)
        assert body.kind is BodyKind.NATIVE_FORM
        assert body.content is params
        assert 'content-type' not in body.headers

    def test_text(self):
        body = encode(data='hello')
        assert body.kind is BodyKind.TEXT
        assert body.headers['content-type'] == 'text/plain; charset=utf-8'

    def test_binary(self):
        body = encode(data=bytearray(b'\x00\x01'))
        assert body.kind is BodyKind.BINARY
        assert body.content == b'\x00\x01'
        assert body.headers['content-type'] == 'application/octet-stream'

    def test_stream_is_not_buffered(self):
        handle = io.BytesIO(b'payload')
        body = encode(data=handle)
        assert body.kind is BodyKind.STREAM
        assert body.content is handle
        assert handle.tell() == 0


class TestMultipart:
    def test_fields_and_files(self):
        when = dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
        body = encode(
            data={
                'title': 'report',
                'draft': True,
                'tags': ['a', None, 'b'],
                'meta': {'k': 1},
                'at': when,
                'skip': None,
            },
            files={
                'doc': FileField(b'%PDF', filename='report.pdf', content_type='application/pdf'),
                'images': [b'img1', {'file': b'img2', 'filename': 'b.png', 'contentType': 'image/png'}],
            },
        )
        assert body.kind is BodyKind.MULTIPART
        multipart = body.content
        assert body.headers['content-type'] == (
            f'multipart/form-data; boundary={multipart.boundary}'
        )
        assert multipart.fields == (
            ('title', 'report'),
            ('draft', 'true'),
            ('tags', 'a'),
            ('tags', 'b'),
            ('meta', '{"k":1}'),
            ('at', '2024-01-01T00:00:00.000Z'),
        )
        assert multipart.files == (
            ('doc', ('report.pdf', b'%PDF', 'application/pdf')),
            ('images', ('images', b'img1', None)),
            ('images', ('b.png', b'img2', 'image/png')),
        )

    def test_content_type_is_forced(self):
        body = encode({'content-type': 'application/json'}, files={'f': b'x'})
        assert body.headers['content-type'].startswith('multipart/form-data; boundary=')

    def test_boundaries_are_random(self):
        first = encode(files={'f': b'x'}).content.boundary
        second = encode(files={'f': b'x'}).content.boundary
        assert first != second

    def test_data_must_be_mapping(self):
        with pytest.raises(RequestValidationError, match='data must be a plain mapping'):
            encode(data='text', files={'f': b'x'})

    def test_filename_from_file_handle(self, tmp_path):
        path = tmp_path / 'notes.txt'
        path.write_bytes(b'notes')
        with open(path, 'rb') as handle:
            body = encode(files={'upload': handle})
        assert body.content.files[0][1][0] == 'notes.txt'


class TestEncodeJson:
    def test_non_finite_numbers_become_null(self):
        assert json.loads(encode_json({'a': float('nan'), 'b': float('inf')})) == {'a': None, 'b': None}

    def test_dates_are_iso(self):
        assert encode_json({'d': dt.date(2024, 2, 3)}) == '{"d":"2024-02-03"}'

    def test_circular_reference_is_rejected(self):
        data: dict = {}
        data['self'] = data
        with pytest.raises(RequestValidationError):
            encode_json(data)

    def test_shared_references_are_not_circular(self):
        shared = [1]
        assert encode_json({'a': shared, 'b': shared}) == '{"a":[1],"b":[1]}'

    def test_default_hook(self):
        class Point:
            def __init__(self, x):
                self.x = x

        assert encode_json({'p': Point(1)}, default=lambda obj: {'x': obj.x}) == '{"p":{"x":1}}'

    def test_unserializable_is_rejected(self):
        with pytest.raises(RequestValidationError):
            encode_json({'p': object()})

    def test_unicode_is_kept(self):
        assert encode_json({'name': 'café'}) == '{"name":"café"}'


class TestResolveRequest:
    def test_composes_headers_body_cookies_and_auth(self):
        request = resolve_request(RequestConfig(
            url='https://api.example.com/items',
            method='post',
            headers={'X-Trace': 'on'},
            data={'a': 1},
            cookies={'sid': '1'},
            auth={'bearer': 'tok'},
        ))
        assert request.method == 'POST'
        assert request.url == 'https://api.example.com/items'
        assert request.body_kind is BodyKind.JSON
        assert request.headers == {
            'x-trace': 'on',
            'content-type': 'application/json',
            'cookie': 'sid=1',
            'authorization': 'Bearer tok',
        }
