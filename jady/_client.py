'''
the public entry points: `call`, `create` and `Client`
'''
from collections.abc import Mapping
from typing import Any

from jady._config import DEFAULT_CONFIG, RequestConfig, merge_config
from jady._dispatch import dispatch
from jady._models import Response
from jady.adapters import HttpxAdapter

CLIENT_DEFAULTS: RequestConfig = merge_config(
    DEFAULT_CONFIG,
    RequestConfig(adapter=HttpxAdapter()),
)

ConfigLike = RequestConfig | Mapping[str, Any] | None


def _overlay(config: ConfigLike, options: Mapping[str, Any]) -> ConfigLike:
    if not options:
        return config
    return merge_config(config, options)


async def call(config: ConfigLike = None, **options: Any) -> Response:
    '''
    Dispatch a single request with the package defaults and the httpx adapter.

    Parameters
    ----------
    config : RequestConfig | Mapping[str, Any] | None, optional
    **options
        `RequestConfig` fields layered over `config`.

    Returns
    -------
    Response

    Raises
    ------
    JadyError
    RequestValidationError
    '''
    return await dispatch(_overlay(config, options), CLIENT_DEFAULTS)


class Client:
    '''
    An immutable set of defaults for a family of requests.

    Every call merges the call-site config over the client defaults, which in
    turn sit over the package defaults. Creating a child never changes the
    parent.

    >>> api = jady.create(base_url='https://api.example.com', retry=2)
    >>> user = await api.get('/users/{id}', path={'id': 7})
    '''

    __slots__ = ('_defaults',)

    def __init__(self, defaults: ConfigLike = None, **options: Any) -> None:
        self._defaults: RequestConfig = merge_config(
            CLIENT_DEFAULTS,
            _overlay(defaults, options),
        )

    @property
    def defaults(self) -> RequestConfig:
        return self._defaults

    def __repr__(self) -> str:
        return f'Client(base_url={self._defaults.base_url!r})'

    async def __call__(self, config: ConfigLike = None, **options: Any) -> Response:
        return await dispatch(_overlay(config, options), self._defaults)

    async def request(self, method: str, url: str, **options: Any) -> Response:
        return await self(method=method, url=url, **options)

    async def get(self, url: str, **options: Any) -> Response:
        return await self.request('GET', url, **options)

    async def head(self, url: str, **options: Any) -> Response:
        return await self.request('HEAD', url, **options)

    async def options(self, url: str, **options: Any) -> Response:
        return await self.request('OPTIONS', url, **options)

    async def delete(self, url: str, **options: Any) -> Response:
        return await self.request('DELETE', url, **options)

    async def post(self, url: str, data: Any = None, **options: Any) -> Response:
        return await self.request('POST', url, data=data, **options)

    async def put(self, url: str, data: Any = None, **options: Any) -> Response:
        return await self.request('PUT', url, data=data, **options)

    async def patch(self, url: str, data: Any = None, **options: Any) -> Response:
        return await self.request('PATCH', url, data=data, **options)

    def create(self, defaults: ConfigLike = None, **options: Any) -> 'Client':
        child = Client.__new__(Client)
        child._defaults = merge_config(self._defaults, _overlay(defaults, options))
        return child


def create(defaults: ConfigLike = None, **options: Any) -> Client:
    '''
    Create a `Client` with its own defaults.

    Parameters
    ----------
    defaults : RequestConfig | Mapping[str, Any] | None, optional
    **options
        `RequestConfig` fields layered over `defaults`.

    Returns
    -------
    Client
    '''
    return Client(defaults, **options)
