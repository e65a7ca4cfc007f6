"""Errors surfaced to operator-facing endpoints.

The gateway-facing IPN route never lets these escape; see routers/payfast.py.
"""


class ChurpayError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class NotConfigured(ChurpayError):
    code = "not_configured"
    status_code = 503


class NotFound(ChurpayError):
    code = "not_found"
    status_code = 404


class BadInput(ChurpayError):
    code = "bad_input"
    status_code = 400
