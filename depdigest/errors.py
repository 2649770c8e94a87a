from __future__ import annotations

E_CONFIG = "E_CONFIG"
E_PATTERN = "E_PATTERN"
E_SCAN = "E_SCAN"
E_RESOLVE = "E_RESOLVE"


class DepDigestError(RuntimeError):
    """Base for every failure that aborts a run.

    The message is prefixed with ``code`` so log lines stay greppable.
    """

    code = "E_DEPDIGEST"

    def __init__(self, message: str) -> None:
        self.detail = message
        super().__init__(f"{self.code}: {message}")

    def within(self, context: str) -> DepDigestError:
        """Same error class, message prefixed with where it happened."""
        return type(self)(f"{context}: {self.detail}")


class ConfigError(DepDigestError):
    code = E_CONFIG


class PatternError(DepDigestError):
    code = E_PATTERN


class ScanError(DepDigestError):
    code = E_SCAN


class ResolveError(DepDigestError):
    code = E_RESOLVE
