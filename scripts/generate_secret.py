#!/usr/bin/env python3
"""Generate a signing secret for JWT_SECRET_KEY.

Usage:
    python scripts/generate_secret.py
    python scripts/generate_secret.py --bytes 48 --env
"""

import argparse
import secrets
import sys

from vipbar.core.config import MIN_SECRET_LENGTH, WEAK_SECRET_MARKERS


def generate_secret(num_bytes: int) -> str:
    """Random hex secret that the signing-secret check will accept."""
    while True:
        secret = secrets.token_hex(num_bytes)
        if not any(marker in secret for marker in WEAK_SECRET_MARKERS):
            return secret


def main():
    parser = argparse.ArgumentParser(description="Generate a VIP Bar JWT signing secret")
    parser.add_argument("--bytes", type=int, default=32, help="Random bytes (default: 32)")
    parser.add_argument("--env", action="store_true", help="Print as a .env line")
    args = parser.parse_args()

    if args.bytes * 2 < MIN_SECRET_LENGTH:
        print(f"ERROR: --bytes must give at least {MIN_SECRET_LENGTH} hex characters")
        sys.exit(1)

    secret = generate_secret(args.bytes)
    print(f"JWT_SECRET_KEY={secret}" if args.env else secret)


if __name__ == "__main__":
    main()
