'''
the jady dispatch engine

Drives one call through

    PREPARING -> ATTEMPTING -> SUCCESS
                            -> REDIRECTING -> ATTEMPTING
                            -> RETRY_WAITING -> ATTEMPTING
                            -> FAILED

Exactly one adapter call is in flight at a time. Recovery (redirects and
retries) lives here and nowhere below.

Raises
------
JadyError
    for every failure after preparation, see `ErrorCode`.
RequestValidationError
    when the configuration is rejected before the first attempt.
'''
import dataclasses as dc
import datetime as dt
import enum
import inspect
import logging
import math
import time
from collections.abc import Mapping
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from jady._cancel import cancellable_sleep, race_cancel
from jady._config import (
    DEFAULT_CONFIG,
    PARAMS_ARRAY_FORMATS,
    REDIRECT_MODES,
    RESPONSE_TYPES,
    RequestConfig,
    default_validate_status,
    iter_hooks,
    merge_config,
)
from jady._errors import ErrorCode, JadyError, RequestValidationError
from jady._models import Attempt, AttemptError, Response
from jady.request import (
    build_url,
    coerce_auth,
    normalize_headers,
    resolve_request,
    resolve_xsrf_header,
)

logger = logging.getLogger(__name__)

METHOD_REWRITE_STATUSES = frozenset({301, 302, 303})
NON_RETRYABLE_CODES = frozenset({
    ErrorCode.ECANCELED,
    ErrorCode.EMAXREDIRECTS,
    ErrorCode.EPARSE,
})
_DEFAULT_PORTS = {'http': 80, 'https': 443}


class Phase(enum.Enum):
    PREPARING = 'preparing'
    ATTEMPTING = 'attempting'
    REDIRECTING = 'redirecting'
    RETRY_WAITING = 'retry_waiting'
    SUCCESS = 'success'
    FAILED = 'failed'


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


def parse_retry_after(value: Any) -> float | None:
    '''
    Parse a `Retry-After` header into seconds.

    Parameters
    ----------
    value : str | list[str] | None
        delta-seconds or an HTTP-date

    Returns
    -------
    float | None
    '''
    if isinstance(value, list):
        value = value[0] if value else None
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        return max(0.0, seconds) if math.isfinite(seconds) else None

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=dt.timezone.utc)
    return max(0.0, (when - dt.datetime.now(dt.timezone.utc)).total_seconds())


def same_origin(left: httpx.URL, right: httpx.URL) -> bool:
    def origin(url: httpx.URL) -> tuple:
        return url.scheme, url.host, url.port or _DEFAULT_PORTS.get(url.scheme)
    return origin(left) == origin(right)


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def release_body(response: Response) -> None:
    '''
    Close a streamed body that will never reach the caller, releasing the
    exchange behind it.
    '''
    close = getattr(response.body, 'aclose', None)
    if callable(close):
        await _resolve(close())


class Dispatcher:
    '''
    Runs a single call. Instances are not reused across calls.
    '''

    def __init__(
        self,
        config: RequestConfig | Mapping[str, Any] | None,
        defaults: RequestConfig = DEFAULT_CONFIG,
    ) -> None:
        self._started: float = time.monotonic()
        self._defaults: RequestConfig = defaults
        self._config: RequestConfig = merge_config(defaults, config)
        self._attempts: list[Attempt] = []
        self._retries: int = 0
        self._redirects: int = 0
        self._deadline_hit: bool = False
        self._phase: Phase = Phase.PREPARING

    @property
    def attempts(self) -> list[Attempt]:
        return list(self._attempts)

    @property
    def phase(self) -> Phase:
        return self._phase

    def _tag(self) -> str:
        request_id = self._config.request_id
        return f'[{request_id}] ' if request_id else ''

    def _transition(self, phase: Phase) -> None:
        logger.debug(f'{self._tag()}{self._phase.value} -> {phase.value}')
        self._phase = phase

    def _elapsed(self) -> float:
        return time.monotonic() - self._started

    async def run(self) -> Response:
        try:
            return await self._run()
        except JadyError as exc:
            error = await self._fail(exc)
            if error is exc:
                raise
            raise error

    async def _run(self) -> Response:
        config = await self._prepare(self._config)

        while True:
            self._config = config
            try:
                response = await self._attempt(config)
            except JadyError as exc:
                config = await self._recover(config, exc)
                continue

            if response.ok:
                return await self._finish(response)

            try:
                next_config = await self._handle_status(config, response)
            except Exception:
                await release_body(response)
                raise
            if next_config is None:
                return await self._finish(response)
            await release_body(response)
            config = next_config

    # PREPARING

    def _validate(self, config: RequestConfig) -> None:
        if not config.url:
            raise RequestValidationError('url is required')
        coerce_auth(config.auth)
        if config.redirect not in REDIRECT_MODES:
            raise RequestValidationError(f'Invalid redirect mode: {config.redirect!r}')
        if config.params_array_format not in PARAMS_ARRAY_FORMATS:
            raise RequestValidationError(
                f'Invalid params_array_format: {config.params_array_format!r}'
            )
        if config.response_type not in RESPONSE_TYPES:
            raise RequestValidationError(f'Invalid response_type: {config.response_type!r}')

    def _finalize_url(self, config: RequestConfig) -> RequestConfig:
        return dc.replace(
            config,
            url=build_url(config),
            base_url=None,
            path=None,
            params=None,
        )

    def _normalize(self, config: RequestConfig) -> RequestConfig:
        headers = normalize_headers(config.headers)
        headers = resolve_xsrf_header(headers, config)
        return self._finalize_url(dc.replace(config, headers=headers))

    def _coerce_replacement(self, current: RequestConfig, value: Any) -> RequestConfig:
        '''
        A `RequestConfig` returned by a hook replaces the current one wholesale
        but still sits over the dispatch defaults; a mapping is merged over the
        current config. Either way the result is normalized and validated
        again.
        '''
        if isinstance(value, RequestConfig):
            config = merge_config(self._defaults, value)
        elif isinstance(value, Mapping):
            config = merge_config(current, value)
        else:
            raise TypeError(f'Hook returned unsupported config type: {type(value).__name__}')

        config = self._normalize(config)
        self._validate(config)
        return config

    async def _prepare(self, config: RequestConfig) -> RequestConfig:
        config = self._normalize(config)
        self._validate(config)

        for hook in iter_hooks(config.hooks and config.hooks.before_request):
            result = await _resolve(hook(config))
            if result is not None:
                config = self._coerce_replacement(config, result)

        if config.adapter is None:
            raise JadyError('No adapter configured', ErrorCode.EUNKNOWN, config=config)
        return config

    # ATTEMPTING

    def _attempt_budget(self, config: RequestConfig) -> tuple[float | None, bool]:
        timeout = config.timeout or None
        if not config.total_timeout:
            return timeout, False

        remaining = config.total_timeout - self._elapsed()
        if timeout is None or remaining < timeout:
            return max(0.0, remaining), True
        return timeout, False

    def _record(self, url: str, started: float, **fields: Any) -> Attempt:
        attempt = Attempt(url=url, duration=time.monotonic() - started, **fields)
        self._attempts.append(attempt)
        return attempt

    def _check_cancelled(self, config: RequestConfig) -> None:
        token = config.cancel_token
        if token is not None and token.cancelled:
            raise JadyError(token.reason or 'Request canceled', ErrorCode.ECANCELED, config=config)

    async def _attempt(self, config: RequestConfig) -> Response:
        self._transition(Phase.ATTEMPTING)
        self._check_cancelled(config)

        budget, budget_is_total = self._attempt_budget(config)
        if budget_is_total and budget <= 0:
            self._deadline_hit = True
            raise JadyError(
                f'Total timeout of {config.total_timeout}s exceeded',
                ErrorCode.ETIMEDOUT,
                config=config,
            )

        request = resolve_request(config)
        logger.debug(
            f'{self._tag()}Sending request: {request.method} {request.url} '
            f'(attempt {len(self._attempts) + 1})'
        )

        started = time.monotonic()
        try:
            finished, response = await race_cancel(
                config.adapter(request),
                config.cancel_token,
                budget,
            )
        except JadyError as exc:
            if exc.config is None:
                exc.config = config
            self._record(request.url, started, error=AttemptError(exc.code.value, exc.message))
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._record(request.url, started, error=AttemptError(ErrorCode.ENETWORK.value, message))
            raise JadyError(message, ErrorCode.ENETWORK, config=config) from exc

        if not finished:
            error = self._interrupted(config, budget, budget_is_total)
            self._record(request.url, started, error=AttemptError(error.code.value, error.message))
            raise error

        response.duration = time.monotonic() - started
        response.config = config
        validate = config.validate_status or default_validate_status
        response.ok = bool(validate(response.status))
        self._record(
            response.url or request.url,
            started,
            status=response.status,
            status_text=response.status_text,
            headers=response.headers,
        )
        return response

    def _interrupted(self, config: RequestConfig, budget: float | None, is_total: bool) -> JadyError:
        token = config.cancel_token
        if token is not None and token.cancelled:
            return JadyError(token.reason or 'Request canceled', ErrorCode.ECANCELED, config=config)
        if is_total:
            self._deadline_hit = True
            return JadyError(
                f'Total timeout of {config.total_timeout}s exceeded',
                ErrorCode.ETIMEDOUT,
                config=config,
            )
        return JadyError(f'Timeout of {budget}s exceeded', ErrorCode.ETIMEDOUT, config=config)

    # status handling

    def _status_error(self, config: RequestConfig, response: Response, message: str | None = None) -> JadyError:
        error = JadyError(
            message or f'Request failed with status code {response.status}',
            ErrorCode.ENETWORK,
            config=config,
            response=response,
        )
        self._attempts[-1].error = AttemptError(error.code.value, error.message)
        return error

    async def _handle_status(self, config: RequestConfig, response: Response) -> RequestConfig | None:
        status = response.status
        location = response.headers.get('location')
        if isinstance(location, list):
            location = location[0] if location else None

        if 300 <= status < 400:
            if config.redirect == 'follow' and location:
                return await self._redirect(config, response, location)
            if config.redirect == 'manual':
                return None
            if config.redirect == 'error':
                raise self._status_error(
                    config,
                    response,
                    f'Redirect with status code {status} refused (redirect mode is "error")',
                )
            raise self._status_error(config, response)

        if is_retryable_status(status) and (config.retry or 0) > 0:
            error = self._status_error(config, response)
            if self._retries >= config.retry:
                raise error
            return await self._schedule_retry(config, error, response)

        return None

    # REDIRECTING

    async def _redirect(self, config: RequestConfig, response: Response, location: str) -> RequestConfig:
        max_redirects = config.max_redirects if config.max_redirects is not None else 10
        if self._redirects >= max_redirects:
            raise JadyError(
                f'Maximum number of redirects exceeded ({max_redirects})',
                ErrorCode.EMAXREDIRECTS,
                config=config,
                response=response,
            )

        self._redirects += 1
        self._transition(Phase.REDIRECTING)

        current = httpx.URL(response.url or config.url)
        target = current.join(location)
        headers = normalize_headers(config.headers)
        changes: dict[str, Any] = {'url': str(target)}

        if response.status in METHOD_REWRITE_STATUSES:
            changes.update(method='GET', data=None, files=None)
            headers.pop('content-type', None)
            headers.pop('content-length', None)

        if not same_origin(current, target):
            headers.pop('authorization', None)
            headers.pop('cookie', None)
            changes.update(auth=None, cookies=None)

        next_config = dc.replace(config, headers=headers, **changes)

        for hook in iter_hooks(config.hooks and config.hooks.before_redirect):
            await _resolve(hook(next_config, response))

        logger.info(
            f'{self._tag()}Following {response.status} redirect to {target} '
            f'({self._redirects}/{max_redirects})'
        )
        return next_config

    # RETRY_WAITING

    async def _recover(self, config: RequestConfig, error: JadyError) -> RequestConfig:
        if error.code in NON_RETRYABLE_CODES or self._deadline_hit:
            raise error
        if self._retries >= (config.retry or 0):
            raise error

        attempt_number = self._retries + 1
        if config.retry_condition is not None:
            allowed = await _resolve(config.retry_condition(error, attempt_number))
            if not allowed:
                logger.debug(f'{self._tag()}retry_condition declined retry {attempt_number}')
                raise error

        return await self._schedule_retry(config, error, None)

    async def _retry_delay(
        self,
        config: RequestConfig,
        error: JadyError,
        response: Response | None,
        attempt_number: int,
    ) -> float:
        delay = config.retry_delay
        if callable(delay):
            return max(0.0, float(await _resolve(delay(attempt_number, error))))
        if delay is not None:
            return max(0.0, float(delay))
        if response is not None:
            retry_after = parse_retry_after(response.headers.get('retry-after'))
            if retry_after is not None:
                return retry_after
        return 0.0

    async def _schedule_retry(
        self,
        config: RequestConfig,
        error: JadyError,
        response: Response | None,
    ) -> RequestConfig:
        self._transition(Phase.RETRY_WAITING)
        attempt_number = self._retries + 1

        for hook in iter_hooks(config.hooks and config.hooks.before_retry):
            result = await _resolve(hook(error, attempt_number))
            if result is False:
                logger.debug(f'{self._tag()}before_retry hook aborted retry {attempt_number}')
                raise error
            if result is not None and result is not True:
                config = self._coerce_replacement(config, result)

        if config.adapter is None:
            raise JadyError('No adapter configured', ErrorCode.EUNKNOWN, config=config)

        delay = await self._retry_delay(config, error, response, attempt_number)
        if config.total_timeout and self._elapsed() + delay > config.total_timeout:
            self._deadline_hit = True
            raise JadyError(
                'Total timeout exceeded during retry delay',
                ErrorCode.ETIMEDOUT,
                config=config,
                response=response,
            ) from error

        logger.info(
            f'{self._tag()}Retrying {config.method} {config.url} in {delay:.3f}s '
            f'(retry {attempt_number}/{config.retry}): {error.message}'
        )
        if delay > 0:
            finished = await cancellable_sleep(delay, config.cancel_token)
            if not finished:
                raise JadyError(
                    config.cancel_token.reason or 'Request canceled',
                    ErrorCode.ECANCELED,
                    config=config,
                )

        self._retries += 1
        return config

    # SUCCESS / FAILED

    def _stamp(self, response: Response) -> Response:
        response.attempts = list(self._attempts)
        response.total_duration = self._elapsed()
        return response

    async def _finish(self, response: Response) -> Response:
        self._transition(Phase.SUCCESS)
        self._stamp(response)
        hooks = self._config.hooks
        for hook in iter_hooks(hooks and hooks.after_response):
            result = await _resolve(hook(response))
            if result is not None:
                response = result
        return self._stamp(response)

    async def _fail(self, error: JadyError) -> BaseException:
        self._transition(Phase.FAILED)
        if error.config is None:
            error.config = self._config
        error.attempts = list(self._attempts)
        if error.response is not None:
            self._stamp(error.response)

        hooks = self._config.hooks
        current: BaseException = error
        for hook in iter_hooks(hooks and hooks.before_error):
            result = await _resolve(hook(current))
            if isinstance(result, BaseException):
                current = result

        log = logger.warning if self._retries or self._redirects else logger.debug
        log(
            f'{self._tag()}Request failed after {len(self._attempts)} attempt(s): '
            f'{error.code.value} {error.message}'
        )
        return current


async def dispatch(
    config: RequestConfig | Mapping[str, Any] | None,
    defaults: RequestConfig = DEFAULT_CONFIG,
) -> Response:
    '''
    Dispatch one request and return its normalized response.

    Parameters
    ----------
    config : RequestConfig | Mapping[str, Any] | None
    defaults : RequestConfig, optional
        The base config merged under `config`, by default DEFAULT_CONFIG

    Returns
    -------
    Response
    '''
    return await Dispatcher(config, defaults).run()
