import contextlib
import ipaddress
import logging
import socket
import ssl
import urllib.request

import httpx

from jady._config import TransportOptions

logger = logging.getLogger(__name__)


class URLRejectedError(ValueError):
    '''
    Raised when the transport refuses to connect to a URL.

    Parent: ValueError
    '''


# (level, option name, value); options the platform lacks are skipped
_SOCKET_OPTIONS = (
    ('IPPROTO_TCP', 'TCP_NODELAY', 1),
    ('SOL_SOCKET', 'SO_KEEPALIVE', 1),
    ('IPPROTO_TCP', 'TCP_KEEPIDLE', 60),
    ('IPPROTO_TCP', 'TCP_KEEPINTVL', 10),
    ('IPPROTO_TCP', 'TCP_KEEPCNT', 5),
)


def default_socket_options() -> list[tuple[int, int, int]]:
    '''
    TCP_NODELAY plus keepalive probing, limited to what the running platform
    exposes.

    Returns
    -------
    list[tuple[int, int, int]]
    '''
    return [
        (getattr(socket, level), getattr(socket, name), value)
        for level, name, value in _SOCKET_OPTIONS
        if hasattr(socket, level) and hasattr(socket, name)
    ]


CIPHER_SUITES = {
    ssl.TLSVersion.TLSv1_3: (
        'TLS_AES_128_GCM_SHA256',
        'TLS_AES_256_GCM_SHA384',
        'TLS_CHACHA20_POLY1305_SHA256',
    ),
    ssl.TLSVersion.TLSv1_2: (
        'ECDHE-ECDSA-AES128-GCM-SHA256',
        'ECDHE-RSA-AES128-GCM-SHA256',
        'ECDHE-ECDSA-CHACHA20-POLY1305',
        'ECDHE-RSA-CHACHA20-POLY1305',
        'ECDHE-ECDSA-AES256-GCM-SHA384',
        'ECDHE-RSA-AES256-GCM-SHA384',
    ),
}


def verified_ssl_context(http2: bool = True) -> ssl.SSLContext:
    '''
    Certificate and hostname verifying context limited to TLS 1.2 and newer
    with AEAD cipher suites only.

    Parameters
    ----------
    http2 : bool, optional
        offer h2 through ALPN ahead of http/1.1, by default True

    Returns
    -------
    ssl.SSLContext
    '''
    ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.options |= ssl.OP_NO_COMPRESSION

    with contextlib.suppress(NotImplementedError):
        ctx.set_alpn_protocols(['h2', 'http/1.1'] if http2 else ['http/1.1'])

    # OpenSSL only lets TLS 1.3 suites be chosen where set_ciphersuites exists
    set_ciphersuites = getattr(ctx, 'set_ciphersuites', None)
    if callable(set_ciphersuites):
        with contextlib.suppress(ssl.SSLError):
            set_ciphersuites(':'.join(CIPHER_SUITES[ssl.TLSVersion.TLSv1_3]))
    ctx.set_ciphers(':'.join(CIPHER_SUITES[ssl.TLSVersion.TLSv1_2]))

    return ctx


def host_is_private_literal(host: str) -> bool:
    '''
    True when `host` is an IP literal that does not route to the public
    internet. IPv4-mapped IPv6 literals are judged by their IPv4 address.
    Hostnames are never private since no DNS lookup happens here.
    '''
    try:
        ip = ipaddress.ip_address(host.strip('[]'))
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return not ip.is_global or ip.is_multicast


def check_request_url(url: httpx.URL, block_private_ip: bool) -> httpx.URL:
    '''
    Reject unsupported schemes and, when asked to, private IP literals.

    Raises
    ------
    URLRejectedError
    '''
    if url.scheme not in ('http', 'https'):
        raise URLRejectedError(f'Rejected unsupported URL scheme: {url.scheme}')

    if not url.host:
        raise URLRejectedError(f'Rejected URL without host: {url}')

    if block_private_ip and host_is_private_literal(url.host):
        raise URLRejectedError(f'Rejected private/invalid host: {url.host}')

    return url


def environment_proxy(url: httpx.URL) -> str | None:
    '''
    Proxy URL for `url` from the *_proxy environment variables, honoring
    no_proxy.
    '''
    proxies = urllib.request.getproxies()
    proxy = proxies.get(url.scheme) or proxies.get("all")
    if not proxy:
        return None
    if urllib.request.proxy_bypass(url.host):
        return None
    return proxy


def select_proxy(url: httpx.URL, options: TransportOptions) -> str | None:
    if options.proxy is False:
        return None
    if options.proxy:
        return options.proxy
    if options.trust_env:
        return environment_proxy(url)
    return None


class JadyTransport(httpx.AsyncBaseTransport):
    '''
    httpx transport for a single jady exchange: TCP keepalive socket options,
    a verified TLS context (or none when verification is off), optional
    HTTP/2 and proxy support.
    '''
    def __init__(
        self,
        *,
        http2: bool = True,
        verify: bool = True,
        proxy: str | None = None,
        local_address: str | None = None,
        retries: int = 0,
        block_private_ip: bool = False,
    ) -> None:
        self._block_private_ip = block_private_ip
        self._inner: httpx.AsyncHTTPTransport = httpx.AsyncHTTPTransport(
            http2=http2,
            socket_options=default_socket_options(),
            verify=verified_ssl_context(http2) if verify else False,
            trust_env=False,
            proxy=proxy,
            local_address=local_address,
            retries=retries,
        )

    @classmethod
    def from_options(cls, url: httpx.URL, options: TransportOptions) -> 'JadyTransport':
        proxy = select_proxy(url, options)
        if proxy:
            logger.debug(f'Using proxy {proxy} for {url.host}')
        return cls(
            http2=bool(options.http2),
            verify=options.verify is not False,
            proxy=proxy,
            local_address=options.local_address,
            retries=options.connect_retries or 0,
            block_private_ip=bool(options.block_private_ip),
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        request.url = check_request_url(request.url, self._block_private_ip)
        return await self._inner.handle_async_request(request)

    async def aclose(self) -> None:
        await self._inner.aclose()
