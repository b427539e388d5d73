#!/usr/bin/env python
"""
Initialize the database for TenderAlert.
Run this script to set up the database with categories and sample tenders.
Set ADMIN_EMAIL and ADMIN_PASSWORD to also create an admin account.
"""

import os

from tenderalert import database as db
from tenderalert.auth import signup, grant_role


def main():
    print("Initializing TenderAlert database...")

    # Initialize database schema
    db.init_database()
    print("Database schema created.")

    db.seed_categories()
    print("Tender categories seeded.")

    added = db.seed_sample_tenders()
    print(f"Sample tenders seeded: {added} new.")

    admin_email = os.environ.get('ADMIN_EMAIL')
    admin_password = os.environ.get('ADMIN_PASSWORD')
    if admin_email and admin_password:
        profile = db.get_profile_by_email(admin_email)
        if profile:
            user_id = profile['id']
        else:
            user_id = signup(admin_email, admin_password, first_name='Admin')['user']['id']
        grant_role(user_id, 'admin')
        print(f"Admin account ready: {admin_email}")

    print("\nDatabase initialization complete!")
    print(f"Database location: {db.DB_PATH}")


if __name__ == '__main__':
    main()
