from __future__ import annotations


class AuthError(RuntimeError):
    """Base class for credential lifecycle failures.

    ``step`` names the stage that failed and ``reauth_required`` tells the
    caller whether retrying will need the user to consent again.
    """

    step = "authentication"
    reauth_required = False

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        reauth_required: bool | None = None,
    ) -> None:
        super().__init__(message)
        if step is not None:
            self.step = step
        if reauth_required is not None:
            self.reauth_required = reauth_required


class ConfigurationError(AuthError):
    step = "configuration"


class ConsentError(AuthError):
    step = "consent"
    reauth_required = True


class ConsentTimeout(ConsentError):
    pass


class ConsentStateMismatch(ConsentError):
    pass


class ConsentDenied(ConsentError):
    pass


class TokenExchangeFailure(AuthError):
    step = "code exchange"
    reauth_required = True


class RefreshFailure(AuthError):
    step = "token refresh"

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message, reauth_required=not transient)
        self.transient = transient


class RevocationFailure(AuthError):
    step = "revocation"


class AuthenticationError(AuthError):
    """Single error surfaced by the credential provider to its callers."""

    @classmethod
    def from_error(cls, error: AuthError) -> "AuthenticationError":
        message = f"Authentication failed during {error.step}: {error}"
        if error.reauth_required:
            message += " Re-consent is required; retrying will open the browser again."
        else:
            message += " The cached credential was kept; the operation can be retried."
        return cls(message, step=error.step, reauth_required=error.reauth_required)
