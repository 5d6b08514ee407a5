"""
Migration: Add announcements.target_audience

Databases created before audience targeting have no target_audience column;
existing announcements become visible to everyone ('all').
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import db


def migrate(target_app=None):
    if target_app is None:
        from app import app as target_app
    with target_app.app_context():
        with db.engine.connect() as conn:
            result = conn.execute(db.text("PRAGMA table_info(announcements)"))
            columns = [row[1] for row in result]

            if 'target_audience' not in columns:
                print("Adding target_audience column...")
                conn.execute(db.text("""
                    ALTER TABLE announcements
                    ADD COLUMN target_audience VARCHAR(16) NOT NULL DEFAULT 'all'
                """))
                conn.commit()
                print("✓ Added target_audience")
            else:
                print("✓ target_audience already exists")

        print("\n✅ Migration completed successfully!")

if __name__ == "__main__":
    migrate()
