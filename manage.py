import argparse, json, secrets, string
from app import create_app
from models import db, ACCOUNT_MODELS, Student, Teacher

def rand_password(n=10):
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))

def _apply_extra(acct, it):
    if isinstance(acct, Student):
        acct.enrollment_no = it.get("enrollment_no") or acct.enrollment_no
        acct.semester = int(it.get("semester") or acct.semester or 1)
        acct.department = it.get("department") or acct.department
    elif isinstance(acct, Teacher):
        acct.subject_specialization = it.get("subject_specialization") or acct.subject_specialization
        acct.qualification = it.get("qualification") or acct.qualification

def upsert_accounts(app, role, items):
    model = ACCOUNT_MODELS[role]
    with app.app_context():
        out = []
        for it in items:
            name = it["name"].strip()
            email = it["email"].strip().lower()
            pw = it.get("password") or rand_password()
            acct = model.query.filter_by(email=email).first()
            if not acct:
                acct = model(name=name, email=email)
                db.session.add(acct)
                action = "created"
            else:
                acct.name = name
                action = "updated"
            acct.set_password(pw)
            _apply_extra(acct, it)
            out.append({"email": email, "password": pw, "action": action})
        db.session.commit()
        print(f"Seeded/updated {role}s:", len(out))
        for r in out:
            print(f"{r['email']}: {r['password']} ({r['action']})")
        return out

def seed_accounts(app, role, json_path):
    """
    JSON: [{"name":"Ada","email":"ada@school.edu","password":"...", ...}]
    Students also take enrollment_no/semester/department, teachers
    subject_specialization/qualification. Omitted passwords are generated.
    """
    with open(json_path, "r") as fh:
        items = json.load(fh)
    return upsert_accounts(app, role, items)

def main(argv=None, app=None):
    parser = argparse.ArgumentParser(description="ClassFlow operator commands")
    sub = parser.add_subparsers(dest="cmd", required=True)
    for cmd in ("seed-students", "seed-teachers", "seed-admins"):
        p = sub.add_parser(cmd)
        p.add_argument("json_path")
    p = sub.add_parser("create-admin")
    p.add_argument("--name", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--password")
    args = parser.parse_args(argv)

    app = app or create_app()
    if args.cmd == "create-admin":
        return upsert_accounts(app, "admin", [{"name": args.name, "email": args.email,
                                               "password": args.password}])
    role = {"seed-students": "student", "seed-teachers": "teacher", "seed-admins": "admin"}[args.cmd]
    return seed_accounts(app, role, args.json_path)

if __name__ == "__main__":
    main()
