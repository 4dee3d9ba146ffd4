"""
cas/errors.py -- Exception taxonomy for the CAS client.

  ConfigurationError  invalid base/app URL or empty prefix. Recoverable and
                      local: builder setters log it and keep the old value.
  NetworkError        the serviceValidate HTTP call failed or timed out.
  ProtocolError       the response body could not be decoded as text, or it
                      named no user (authenticationFailure, not XML).
  SessionError        the session collaborator could not store CAS state.

NetworkError and ProtocolError never reach the end user. The gate collapses
them into "authentication failed" and answers with a login redirect.
"""


class CasError(Exception):
    """Base class for every error raised by the cas package."""


class ConfigurationError(CasError):
    pass


class NetworkError(CasError):
    pass


class ProtocolError(CasError):
    pass


class SessionError(CasError):
    pass
