"""OAuth credential lifecycle for HubSpot and Slack.

- CredentialCache: cached token with single-flight ahead-of-expiry refresh
- HubSpotTokenExchanger / SlackTokenExchanger: refresh-token grants
"""

from src.deal_context.auth.credentials import (
    HUBSPOT_REFRESH_BUFFER_MS,
    SLACK_REFRESH_BUFFER_MS,
    Credential,
    CredentialCache,
)
from src.deal_context.auth.exchange import (
    HubSpotTokenExchanger,
    SlackTokenExchanger,
    TokenGrant,
)

__all__ = [
    "Credential",
    "CredentialCache",
    "HUBSPOT_REFRESH_BUFFER_MS",
    "HubSpotTokenExchanger",
    "SLACK_REFRESH_BUFFER_MS",
    "SlackTokenExchanger",
    "TokenGrant",
]
