"""Exception taxonomy for the bot.

Everything raised on purpose derives from ``BotError`` so the reply pipeline can
isolate one failing notification without catching programming errors blindly.
"""

from typing import Optional


class BotError(Exception):
    pass


class TransientHTTPError(BotError):
    """429 / 5xx from an upstream API. Eligible for retry."""

    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"transient http={status_code} body={body[:300]}")


class MastodonAPIError(BotError):
    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Mastodon API error: {status_code} - {body}")


class ChatAPIError(BotError):
    def __init__(self, detail: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(f"Chat API error: {status_code} - {detail}" if status_code else f"Chat API error: {detail}")


class ToolLoopExhausted(BotError):
    def __init__(self, iterations: int):
        self.iterations = iterations
        super().__init__(f"model is still calling tools after {iterations} iterations")


class ThreadCloneError(BotError):
    pass


class ReplyTooLongError(BotError):
    pass


class RetryExhausted(BotError):
    def __init__(self, label: str, attempts: int, last_error: Exception):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"with_retry(label={label}): retry exhausted after {attempts} attempts: {last_error}")
