"""Error taxonomy for the RDS configuration engine."""


class RdsConfigurationError(Exception):
    """Base error carrying a short summary and an optional long-form detail."""

    def __init__(self, summary: str, detail: str = "") -> None:
        self.summary = summary
        self.detail = detail
        super().__init__(self.message)

    @property
    def message(self) -> str:
        if self.detail:
            return f"{self.summary}\n\n{self.detail}"
        return self.summary


class ConfigurationError(RdsConfigurationError):
    """Client option missing or invalid. Raised before any network activity."""


class ConnectionFailedError(RdsConfigurationError, ConnectionError):
    """Connection could not be established and verified within connect_timeout."""


class QueryError(RdsConfigurationError):
    """A remote read/write call failed or a result row could not be decoded."""


class ValidationError(RdsConfigurationError):
    """Desired configuration is malformed or names unsupported settings."""

    def __init__(
        self,
        summary: str,
        detail: str = "",
        unknown_names: list[str] | None = None,
    ) -> None:
        self.unknown_names = list(unknown_names or [])
        super().__init__(summary, detail)


class ImportStateError(RdsConfigurationError):
    """Adopting the remote configuration into managed state failed."""
