"""
Client module for RetroChat application.
Provides the standard command-line client.
"""

from .command_line_client import StandardCommandlineClient

__all__ = ['StandardCommandlineClient']
