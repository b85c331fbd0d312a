"""
Entry point for running RetroChat from a source checkout (``python .``).
"""

from RetroChat.__main__ import main

if __name__ == '__main__':
    main()
