"""
Client startup module for RetroChat application.
Provides the entry point for starting the chat client.
"""

import asyncio

from RetroChat.config import config
from RetroChat.core.client import StandardCommandlineClient
from RetroChat.core.logging import auto_configure

__all__ = ['client']


def client(url=None, username=None, password=None):
    """
    Start the chat client against a backend.
    Args:
        url (str): Backend base URL (default: RETROCHAT_BACKEND_URL)
        username (str): Account to sign in with; prompted when missing
        password (str): Password; prompted when missing
    """
    auto_configure(config.ENV)
    url = url or config.BACKEND_URL
    print("Welcome RetroChat Client!")
    print(f"Current setting: backend={url}")
    try:
        asyncio.run(StandardCommandlineClient(url).run(username, password))
    except KeyboardInterrupt:
        print("Bye!")
