"""
Migration: Add quizzes.semester

Quizzes created before semester filtering are assigned to semester 1.
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
            result = conn.execute(db.text("PRAGMA table_info(quizzes)"))
            columns = [row[1] for row in result]

            if 'semester' not in columns:
                print("Adding semester column...")
                conn.execute(db.text("""
                    ALTER TABLE quizzes
                    ADD COLUMN semester INTEGER NOT NULL DEFAULT 1
                """))
                conn.execute(db.text(
                    "CREATE INDEX IF NOT EXISTS ix_quizzes_semester ON quizzes (semester)"
                ))
                conn.commit()
                print("✓ Added semester")
            else:
                print("✓ semester already exists")

        print("\n✅ Migration completed successfully!")

if __name__ == "__main__":
    migrate()
