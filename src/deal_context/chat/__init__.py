"""Slack chat backend access and per-thread conversation memory."""

from src.deal_context.chat.context import ThreadContext, ThreadContextCache, ThreadMessage
from src.deal_context.chat.slack import (
    ChannelInfo,
    PostedMessage,
    SlackClient,
    SlackMessage,
    channel_name_to_deal_query,
    extract_question,
    filter_channel_history,
    is_bot_message,
    is_public_channel,
)

__all__ = [
    "ChannelInfo",
    "PostedMessage",
    "SlackClient",
    "SlackMessage",
    "ThreadContext",
    "ThreadContextCache",
    "ThreadMessage",
    "channel_name_to_deal_query",
    "extract_question",
    "filter_channel_history",
    "is_bot_message",
    "is_public_channel",
]
