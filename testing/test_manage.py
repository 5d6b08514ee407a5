import json
import sqlite3

import app as app_module
import manage
from models import db, Admin, Student, Teacher
from migrate import migrate_add_target_audience, migrate_add_quiz_semester, migrate_add_attempt_total_marks


def test_seed_students_from_json(app, tmp_path, capsys):
    path = tmp_path / "students.json"
    path.write_text(json.dumps([
        {"name": "Ada", "email": "ADA@example.com", "password": "ada12345", "enrollment_no": "E1", "semester": 4},
        {"name": "Bob", "email": "bob@example.com", "enrollment_no": "E2"},
    ]))
    out = manage.main(["seed-students", str(path)], app=app)
    assert [r["action"] for r in out] == ["created", "created"]
    assert out[1]["password"]  # generated
    assert "ada@example.com" in capsys.readouterr().out

    with app.app_context():
        ada = Student.query.filter_by(email="ada@example.com").one()
        assert ada.semester == 4
        assert ada.check_password("ada12345")
        assert Student.query.filter_by(email="bob@example.com").one().check_password(out[1]["password"])

    out = manage.main(["seed-students", str(path)], app=app)
    assert [r["action"] for r in out] == ["updated", "updated"]


def test_seed_teachers_and_create_admin(app, tmp_path):
    path = tmp_path / "teachers.json"
    path.write_text(json.dumps([{"name": "Tess", "email": "tess@example.com", "qualification": "MSc"}]))
    manage.main(["seed-teachers", str(path)], app=app)
    manage.main(["create-admin", "--name", "Root", "--email", "root@example.com", "--password", "rootpass"], app=app)
    with app.app_context():
        assert Teacher.query.filter_by(email="tess@example.com").one().qualification == "MSc"
        assert Admin.query.filter_by(email="root@example.com").one().check_password("rootpass")


def _legacy_app(tmp_path):
    """A database whose tables predate the audience/semester/total_marks columns."""
    path = tmp_path / "legacy.db"
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE announcements (id INTEGER PRIMARY KEY, title VARCHAR(255) NOT NULL, content TEXT NOT NULL,
            created_by_role VARCHAR(16) NOT NULL, created_by_id INTEGER NOT NULL,
            created_at DATETIME NOT NULL, updated_at DATETIME NOT NULL);
        CREATE TABLE quizzes (id INTEGER PRIMARY KEY, title VARCHAR(255) NOT NULL, description TEXT,
            duration_minutes INTEGER NOT NULL, total_marks INTEGER NOT NULL,
            created_by_teacher_id INTEGER NOT NULL, created_at DATETIME NOT NULL);
        CREATE TABLE quiz_attempts (id INTEGER PRIMARY KEY, quiz_id INTEGER NOT NULL, student_id INTEGER NOT NULL,
            score FLOAT NOT NULL, answers TEXT, submitted_at DATETIME NOT NULL);
        INSERT INTO announcements VALUES (1, 'Hi', 'Body', 'admin', 1, '2024-01-01', '2024-01-01');
        INSERT INTO quizzes VALUES (1, 'Old quiz', NULL, 10, 25, 1, '2024-01-01');
        INSERT INTO quiz_attempts VALUES (1, 1, 1, 20, '{}', '2024-01-02');
    """)
    conn.commit()
    conn.close()
    return app_module.create_app(f"sqlite:///{path}", upload_dir=str(tmp_path)), path


def _columns(path, table):
    conn = sqlite3.connect(str(path))
    try:
        return {row[1]: row for row in conn.execute(f"PRAGMA table_info({table})")}
    finally:
        conn.close()


def test_migrations_add_columns_idempotently(tmp_path):
    legacy, path = _legacy_app(tmp_path)
    assert "target_audience" not in _columns(path, "announcements")

    for _ in range(2):
        migrate_add_target_audience.migrate(legacy)
        migrate_add_quiz_semester.migrate(legacy)
        migrate_add_attempt_total_marks.migrate(legacy)

    assert "target_audience" in _columns(path, "announcements")
    assert "semester" in _columns(path, "quizzes")
    assert "total_marks" in _columns(path, "quiz_attempts")

    conn = sqlite3.connect(str(path))
    try:
        assert conn.execute("SELECT target_audience FROM announcements").fetchone() == ("all",)
        assert conn.execute("SELECT semester FROM quizzes").fetchone() == (1,)
        assert conn.execute("SELECT total_marks FROM quiz_attempts").fetchone() == (25,)
    finally:
        conn.close()

    with legacy.app_context():
        db.session.remove()
        db.engine.dispose()
