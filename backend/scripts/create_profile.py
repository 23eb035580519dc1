# scripts/create_profile.py
import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import argparse
from db.init_db import init_db
from db.session import SessionLocal
from core.security import create_access_token
from services import credit_ledger


def main():
    parser = argparse.ArgumentParser(description="Create or top up a profile and print a bearer token for it.")
    parser.add_argument("user_id")
    parser.add_argument("--credits", type=int, default=3)
    parser.add_argument("--expires-minutes", type=int, default=None)
    args = parser.parse_args()

    init_db()
    db = SessionLocal()
    try:
        res = credit_ledger.grant_credits(db, args.user_id, args.credits, reference_type="manual")
        print(f"Profile {args.user_id}: {res['balance']} interview credits")
    finally:
        db.close()

    token = create_access_token(args.user_id, expires_minutes=args.expires_minutes)
    print(f"Bearer {token}")


if __name__ == "__main__":
    main()
