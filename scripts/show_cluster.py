#!/usr/bin/env python3
"""
Print the consolidated cluster containing a contact.

Usage:
    python scripts/show_cluster.py 42
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.schemas import render_contact
from config.settings import settings
from processing.database import SessionLocal
from processing.identity import IdentityResolver, SqlContactGateway


def main():
    parser = argparse.ArgumentParser(description="Show the cluster of a contact id")
    parser.add_argument("contact_id", type=int)
    args = parser.parse_args()

    db = SessionLocal()
    try:
        contact = IdentityResolver(SqlContactGateway(db)).cluster_of(args.contact_id)
    finally:
        db.close()

    if contact is None:
        print(f"No contact with id {args.contact_id}")
        sys.exit(1)

    print(json.dumps(render_contact(contact, settings.LEGACY_WIRE_FIELD_NAMES), indent=2))


if __name__ == "__main__":
    main()
