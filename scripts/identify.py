#!/usr/bin/env python3
"""
Resolve identity fragments from the command line.

Usage:
    python scripts/identify.py --email a@x.com --phone 111
    python scripts/identify.py --batch fragments.jsonl
    python scripts/identify.py --batch fragments.jsonl --memory

Batch files hold one JSON object per line with "email" and/or
"phoneNumber". --memory resolves against an empty in-memory store
instead of the database, which is handy for dry runs.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Union

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError

from api.schemas import IdentifyRequest, render_contact
from config.settings import settings
from processing.identity import (
    IdentityError,
    IdentityResolver,
    InMemoryContactGateway,
    InvalidInputError,
    SqlContactGateway,
)


def parse_fragment(line: str) -> IdentifyRequest:
    """Parse one batch line; malformed lines raise InvalidInputError."""
    try:
        return IdentifyRequest.model_validate(json.loads(line))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise InvalidInputError(f"Malformed fragment: {line[:80]}") from exc


def load_fragments(batch: Path) -> list[Union[IdentifyRequest, InvalidInputError]]:
    """Read a JSON lines file; bad lines are kept as errors so they are counted."""
    fragments = []
    with open(batch, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                fragments.append(parse_fragment(line))
            except InvalidInputError as exc:
                fragments.append(exc)
    return fragments


def run_fragments(resolver: IdentityResolver, fragments, legacy_names: bool) -> int:
    """Print one JSON result per fragment; return how many failed."""
    failed = 0
    for fragment in fragments:
        try:
            if isinstance(fragment, InvalidInputError):
                raise fragment
            contact = resolver.resolve(email=fragment.email, phone=fragment.phone_number)
        except IdentityError as exc:
            failed += 1
            print(json.dumps({"error": exc.kind.value, "message": exc.message}))
            continue
        print(json.dumps(render_contact(contact, legacy_names)))
    return failed


def main():
    parser = argparse.ArgumentParser(
        description="Resolve email / phone fragments into consolidated contacts"
    )
    parser.add_argument("--email", help="Email address")
    parser.add_argument("--phone", help="Phone number")
    parser.add_argument("--batch", type=Path, help="JSON lines file of fragments")
    parser.add_argument(
        "--memory",
        action="store_true",
        help="Resolve against an in-memory store instead of the database",
    )
    args = parser.parse_args()

    if args.batch:
        fragments = load_fragments(args.batch)
    elif args.email is not None or args.phone is not None:
        fragments = [IdentifyRequest(email=args.email, phone_number=args.phone)]
    else:
        parser.error("give --email and/or --phone, or --batch")

    if args.memory:
        db = None
        gateway = InMemoryContactGateway()
    else:
        from processing.database import SessionLocal, init_db

        init_db()
        db = SessionLocal()
        gateway = SqlContactGateway(db)

    try:
        failed = run_fragments(
            IdentityResolver(gateway), fragments, settings.LEGACY_WIRE_FIELD_NAMES
        )
    finally:
        if db is not None:
            db.close()

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
