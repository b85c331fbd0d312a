"""
Entry point for RetroChat application.
This module provides a command-line interface to start the client.
"""

import argparse

from RetroChat.start import client


def parse():
    # Initialize argument parser for command line interface
    parser = argparse.ArgumentParser(prog='RetroChat', description='RetroChat starter')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    # Setup client command line arguments
    client_parser = subparsers.add_parser('client', help='Startup CLIENT')
    client_parser.add_argument('--url', default=None, help='Backend URL (default: $RETROCHAT_BACKEND_URL)')
    client_parser.add_argument('--user', default=None, help='Username (prompted when omitted)')
    client_parser.add_argument('--password', default=None, help='Password (prompted when omitted)')

    args = parser.parse_args()

    return args


def main():
    args = parse()

    if args.command == 'client':
        client.client(url=args.url, username=args.user, password=args.password)
    else:
        raise Exception('Unknown command')


if __name__ == '__main__':
    main()
