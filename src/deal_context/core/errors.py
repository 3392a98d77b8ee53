"""Failure taxonomy for the deal context pipeline.

Each error carries a ``user_message`` -- the plain-language text the
orchestrator posts back to Slack. The exception message itself holds the
diagnostic detail and is only ever logged.
"""

from __future__ import annotations

_SERVICE_NAMES = {"hubspot": "the CRM", "slack": "Slack"}


def _service_name(service: str) -> str:
    return _SERVICE_NAMES.get(service, service)


class DealContextError(Exception):
    """Base class for all classified pipeline failures."""

    user_message = "Sorry, something went wrong while looking into this deal. Please try again."


class NotConnected(DealContextError):
    """No refresh credential has ever been stored for a service."""

    user_message = (
        "The CRM isn't connected yet. Ask an admin to authorize the app, then try again."
    )

    def __init__(self, service: str) -> None:
        super().__init__(f"{service} not connected: missing refresh token")
        self.service = service
        name = _service_name(service)
        self.user_message = (
            f"{name[0].upper()}{name[1:]} isn't connected yet. "
            "Ask an admin to authorize the app, then try again."
        )


class RefreshFailed(DealContextError):
    """The upstream token endpoint rejected a refresh exchange."""

    user_message = (
        "I couldn't renew access to the CRM. An admin may need to reconnect the app."
    )

    def __init__(self, service: str, reason: str) -> None:
        super().__init__(f"{service} token refresh failed: {reason}")
        self.service = service
        self.reason = reason
        self.user_message = (
            f"I couldn't renew access to {_service_name(service)}. "
            "An admin may need to reconnect the app."
        )


class UpstreamUnavailable(DealContextError):
    """A collaborator call timed out, failed at the network level, or returned an error."""

    user_message = (
        "One of the services I rely on didn't respond properly. Please try again in a moment."
    )

    def __init__(self, service: str, detail: str, status_code: int | None = None) -> None:
        super().__init__(f"{service} unavailable: {detail}")
        self.service = service
        self.detail = detail
        self.status_code = status_code


class CacheUnavailable(DealContextError):
    """The external key-value store is unreachable."""

    user_message = "My cache is unreachable right now. Please try again in a moment."
