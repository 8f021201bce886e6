'''
error taxonomy for jady

every failure that reaches a caller after dispatch has started is a
`JadyError` carrying one of the `ErrorCode` values. Configuration mistakes
found before the first attempt are `RequestValidationError` (a ValueError).
'''
from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from jady._config import RequestConfig
    from jady._models import Attempt, Response


class ErrorCode(str, enum.Enum):
    ENETWORK = 'ENETWORK'
    ETIMEDOUT = 'ETIMEDOUT'
    ECANCELED = 'ECANCELED'
    EPARSE = 'EPARSE'
    EMAXREDIRECTS = 'EMAXREDIRECTS'
    EUNKNOWN = 'EUNKNOWN'


class JadyError(Exception):
    '''
    Raised when a call fails after dispatch has started.

    Attributes
    ----------
    code : ErrorCode
    message : str
    config : RequestConfig | None
        The config in effect when the failure happened.
    response : Response | None
        Partial response, set when a status line was received.
    attempts : list[Attempt]
    '''

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.EUNKNOWN,
        *,
        config: RequestConfig | None = None,
        response: Response | None = None,
        attempts: list[Attempt] | None = None,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.code: ErrorCode = ErrorCode(code)
        self.config = config
        self.response = response
        self.attempts: list[Attempt] = attempts or []

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f'{type(self).__name__}(code={self.code.value!r}, message={self.message!r})'

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def to_dict(self) -> dict[str, Any]:
        return {
            'code': self.code.value,
            'message': self.message,
        }


class RequestValidationError(ValueError):
    '''
    Raised when a request configuration is rejected before any attempt.

    Parent: ValueError
    '''


class InvalidHeaderName(RequestValidationError):
    ...


class InvalidHeaderValue(RequestValidationError):
    ...
