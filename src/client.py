"""Telegram client factory for tasklens.

The session file lives inside a dedicated directory so the connection state
machine can judge (and if needed clear) the session material as a whole.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from telethon import TelegramClient


def load_credentials() -> tuple[int, str]:
    """Read API_ID/API_HASH via python-dotenv to keep secrets out of the repo."""

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")
    return int(api_id), api_hash


def build_client(session_dir: str, session_name: str = "tasklens") -> TelegramClient:
    """Create a Telethon client whose session lives in `session_dir`."""

    api_id, api_hash = load_credentials()

    directory = Path(session_dir)
    directory.mkdir(parents=True, exist_ok=True)

    logging.getLogger(__name__).info("Initializing Telegram client (session in %s)", directory)

    return TelegramClient(str(directory / session_name), api_id, api_hash)
