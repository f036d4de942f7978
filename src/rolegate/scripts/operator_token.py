# src/rolegate/scripts/operator_token.py
"""Mint a bearer token for the bot/operator process calling the operator endpoints."""

import argparse
import time

from jose import jwt

from rolegate.api.v1.dependencies import OPERATOR_SCOPE
from rolegate.core.settings import settings

SECONDS_PER_DAY = 86_400


def create_operator_token(subject: str, ttl_seconds: int) -> str:
    now = int(time.time())
    claims = {
        "sub": subject,
        "scope": OPERATOR_SCOPE,
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def main() -> None:
    parser = argparse.ArgumentParser(description="Create an operator JWT")
    parser.add_argument("--subject", default="bot", help="Token subject (default: bot)")
    parser.add_argument("--days", type=int, default=30, help="Validity in days (default: 30)")
    args = parser.parse_args()
    print(create_operator_token(args.subject, args.days * SECONDS_PER_DAY))


if __name__ == "__main__":
    main()
