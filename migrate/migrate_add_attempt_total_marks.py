"""
Migration: Add quiz_attempts.total_marks

Attempts now keep the quiz total they were scored against. Older rows are
backfilled from their quiz's current total_marks.
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
            result = conn.execute(db.text("PRAGMA table_info(quiz_attempts)"))
            columns = [row[1] for row in result]

            if 'total_marks' not in columns:
                print("Adding total_marks column...")
                conn.execute(db.text("""
                    ALTER TABLE quiz_attempts
                    ADD COLUMN total_marks INTEGER NOT NULL DEFAULT 0
                """))
                conn.execute(db.text("""
                    UPDATE quiz_attempts
                    SET total_marks = (
                        SELECT quizzes.total_marks FROM quizzes
                        WHERE quizzes.id = quiz_attempts.quiz_id
                    )
                    WHERE EXISTS (SELECT 1 FROM quizzes WHERE quizzes.id = quiz_attempts.quiz_id)
                """))
                conn.commit()
                print("✓ Added and backfilled total_marks")
            else:
                print("✓ total_marks already exists")

        print("\n✅ Migration completed successfully!")

if __name__ == "__main__":
    migrate()
