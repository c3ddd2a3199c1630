from __future__ import annotations


class SiteError(RuntimeError):
    """Raised when the site cannot get an answer from the agent."""


class AgentUnavailableError(SiteError):
    """Raised when the agent cannot be reached, or kept failing, after retries."""


class AgentRequestError(SiteError):
    """Raised when the agent rejects a request (4xx) with an error detail."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message
