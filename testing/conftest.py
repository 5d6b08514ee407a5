import os
import tempfile
from types import SimpleNamespace

# configure before the app module builds its module-level app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="classflow-uploads-")

import pytest

import app as app_module
from app import app as flask_app
from models import db, Admin, Teacher, Student


@pytest.fixture
def app(tmp_path):
    flask_app.config.update(TESTING=True, UPLOAD_DIR=str(tmp_path / "uploads"))
    with flask_app.app_context():
        db.drop_all()
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


def _account(model, name, email, password, **extra):
    acct = model(name=name, email=email, **extra)
    acct.set_password(password)
    db.session.add(acct)
    return acct


@pytest.fixture
def people(app):
    """One admin, two teachers, a semester-1 and a semester-2 student."""
    with app.app_context():
        admin = _account(Admin, "Alice Admin", "admin@example.com", "admin123")
        teacher = _account(Teacher, "Tom Teacher", "teacher@example.com", "teacher123")
        other_teacher = _account(Teacher, "Olga Other", "olga@example.com", "olga1234")
        student = _account(Student, "Stu Dent", "student@example.com", "student123",
                           enrollment_no="EN001", semester=1)
        student2 = _account(Student, "Sam Second", "sam@example.com", "sam12345",
                            enrollment_no="EN002", semester=2)
        db.session.commit()
        return SimpleNamespace(admin=admin.id, teacher=teacher.id, other_teacher=other_teacher.id,
                               student=student.id, student2=student2.id)


@pytest.fixture
def tokens(app, people):
    with app.app_context():
        mint = app_module.generate_token
        return SimpleNamespace(
            admin=mint(people.admin, "admin@example.com", "admin"),
            teacher=mint(people.teacher, "teacher@example.com", "teacher"),
            other_teacher=mint(people.other_teacher, "olga@example.com", "teacher"),
            student=mint(people.student, "student@example.com", "student"),
            student2=mint(people.student2, "sam@example.com", "student"),
        )


@pytest.fixture
def auth(tokens):
    def headers(who):
        return {"Authorization": f"Bearer {getattr(tokens, who)}"}
    return headers
