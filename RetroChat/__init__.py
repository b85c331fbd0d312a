"""
    ____       __             ________          __
   / __ \___  / /__________  / ____/ /_  ____ _/ /_
  / /_/ / _ \/ __/ ___/ __ \/ /   / __ \/ __ `/ __/
 / _, _/  __/ /_/ /  / /_/ / /___/ / / / /_/ / /_
/_/ |_|\___/\__/_/   \____/\____/_/ /_/\__,_/\__/

RetroChat - a retro IRC-style chat client with realtime presence.

The client keeps one coherent view of rooms, private conversations and
who is online while the authoritative data lives on a push-notifying
backend that may drop connections or reject requests transiently.

License: Apache-2.0 License
"""

__version__ = "1.0.0"
