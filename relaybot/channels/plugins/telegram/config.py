from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class TelegramConfig:
    bot_token: str
    mode: str = "polling"  # polling | webhook
    webhook_secret: Optional[str] = None
    welcome_text: Optional[str] = None  # sent when the bot is added to a chat
