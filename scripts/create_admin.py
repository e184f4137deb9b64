"""One-time bootstrap script to create an ADMIN user and print a bearer token for it.

Usage:
  python scripts/create_admin.py --username admin --email admin@example.com
Or provide via env: ADMIN_USERNAME, ADMIN_EMAIL
"""
import os
import argparse

from procurement_core.app.db import SessionLocal, create_db_and_tables
from procurement_core.app import models
from procurement_core.app.security import create_access_token


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--username')
    parser.add_argument('--email')
    parser.add_argument('--full-name', default='Administrator')
    args = parser.parse_args()

    username = args.username or os.getenv('ADMIN_USERNAME')
    email = args.email or os.getenv('ADMIN_EMAIL')
    if not username:
        username = input('Username: ').strip()
    if not email:
        email = input('Email: ').strip()

    create_db_and_tables()
    db = SessionLocal()
    try:
        existing = db.query(models.User).filter(models.User.username == username).first()
        if existing:
            if existing.role != models.UserRole.ADMIN:
                print('User exists but is not an admin:', username)
                return
            print('User already exists:', username)
        else:
            user = models.User(
                full_name=args.full_name,
                email=email,
                username=username,
                role=models.UserRole.ADMIN,
            )
            db.add(user)
            db.commit()
            print('Created ADMIN user:', username)
        print('Bearer token:', create_access_token({'sub': username}))
    finally:
        db.close()


if __name__ == '__main__':
    main()
