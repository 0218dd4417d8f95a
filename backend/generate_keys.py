"""Issue a public API key for an existing user.

Usage:
    python generate_keys.py owner@example.com "Zapier"

The plaintext key is printed once; only its hash is stored.
"""

import sys

from funnelboard.database import get_sync_session, init_db
from funnelboard.models import User
from funnelboard.services.api_key_service import ApiKeyService


def main(argv):
    if len(argv) < 2:
        print("Usage: python generate_keys.py <user-email> [key-name]")
        return 1

    email = argv[1]
    name = argv[2] if len(argv) > 2 else "Integration"

    init_db()
    with get_sync_session() as db:
        user = db.query(User).filter(User.email == email).first()
        if not user:
            print(f"Error: no user with email {email}")
            return 1

        api_key, raw_key = ApiKeyService(db).issue_key(user.id, name)
        prefix = api_key.key_prefix

    print(f"Issued key '{name}' ({prefix}...) for {email}")
    print(f"X-API-Key: {raw_key}")
    print("Store it now, it cannot be shown again.")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
