"""
Create Portal Admin User
Run this after the schema exists (starting app.py once creates it):
    python create_admin.py
"""
from uuid import uuid4

import psycopg2
import psycopg2.extras
from werkzeug.security import generate_password_hash
from config import Config

config = Config()

DEFAULT_PASSWORD = "admin123"


def upsert_admin(cur, email, password, name):
    """Create or update the admin identity and profile; returns (profile_id, created)."""
    password_hash = generate_password_hash(password)
    cur.execute("SELECT id FROM auth_identities WHERE email = %s", (email,))
    row = cur.fetchone()
    if row:
        admin_id = row[0]
        cur.execute(
            "UPDATE auth_identities SET password_hash = %s WHERE id = %s",
            (password_hash, admin_id)
        )
        created = False
    else:
        admin_id = str(uuid4())
        cur.execute(
            """INSERT INTO auth_identities (id, email, password_hash, user_metadata)
               VALUES (%s, %s, %s, %s)""",
            (admin_id, email, password_hash, psycopg2.extras.Json({'name': name, 'role': 'admin'}))
        )
        created = True

    cur.execute(
        """INSERT INTO profiles (id, name, email, role)
           VALUES (%s, %s, %s, 'admin')
           ON CONFLICT (id) DO UPDATE
           SET name = EXCLUDED.name, role = 'admin', updated_at = NOW()""",
        (admin_id, name, email)
    )
    return admin_id, created


def create_admin():
    print("=" * 50)
    print("Municipal Portal - Admin Setup")
    print("=" * 50)

    email = (input("Enter admin email [admin@municipal.local]: ").strip() or "admin@municipal.local").lower()
    password = input(f"Enter admin password [{DEFAULT_PASSWORD}]: ").strip() or DEFAULT_PASSWORD
    name = input("Enter full name [Portal Administrator]: ").strip() or "Portal Administrator"

    if config.IS_PRODUCTION and password == DEFAULT_PASSWORD:
        print("\nError: default password is not allowed in production.")
        return
    if len(password) < 6:
        print("\nError: password must be at least 6 characters.")
        return

    try:
        conn = psycopg2.connect(**config.get_psycopg2_kwargs())
        try:
            cur = conn.cursor()
            admin_id, created = upsert_admin(cur, email, password, name)
            conn.commit()
        finally:
            conn.close()
    except psycopg2.Error as e:
        print(f"\nError: {e}")
        print("Make sure PostgreSQL is running and the database exists.")
        print("Start app.py once so the portal tables are created.")
        return

    action = "created" if created else "updated"
    print(f"\nAdmin '{email}' {action} successfully! (id: {admin_id})")
    print("\nDevelopment start: python app.py")
    print("Production start:  python serve.py")
    print(f"Access at: http://localhost:{config.PORT}")

if __name__ == '__main__':
    create_admin()
