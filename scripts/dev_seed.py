# scripts/dev_seed.py
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from models import db, Admin, Teacher, Student

def upsert(model, name, email, password, **extra):
    acct = model.query.filter_by(email=email).one_or_none()
    if acct is None:
        acct = model(name=name, email=email, **extra)
        acct.set_password(password)
        db.session.add(acct)
        print(f"[seed] created {model.role}: {email}")
    else:
        print(f"[seed] {model.role} already exists: {email}")
    return acct

def main(app=None):
    app = app or create_app()
    with app.app_context():
        db.create_all()   # safe if tables already exist

        upsert(Admin,   "Alice Admin",   "admin@example.com",   "admin123")
        upsert(Teacher, "Tom Teacher",   "teacher@example.com", "teacher123",
               subject_specialization="Computer Science")
        upsert(Student, "Stu Dent",      "student@example.com", "student123",
               enrollment_no="EN001", semester=1, department="CSE")

        db.session.commit()
        print("[seed] done.")

if __name__ == "__main__":
    main()
