import os, re, math, base64, binascii, uuid, secrets, argparse, functools, logging
from datetime import datetime, date, timedelta, timezone
from flask import Flask, request, jsonify, send_file, send_from_directory, g, current_app
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from sqlalchemy import func, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from dotenv import load_dotenv
import jwt

from models import (db, ACCOUNT_MODELS, Admin, Teacher, Student, Announcement,
                    Assignment, AssignmentSubmission, Quiz, QuizQuestion, QuizAttempt,
                    Material, Schedule, Feedback, Startup, Notification,
                    SyllabusTopic, SyllabusSubtopic)

# --------------------------------------------------------------------
# Config
# --------------------------------------------------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
load_dotenv(os.path.join(BASE_DIR, ".env"))

APP_ENV = os.environ.get("APP_ENV", "development")
APP_SECRET = os.environ.get("APP_SECRET") or secrets.token_hex(32)
DEFAULT_JWT_SECRET = "your-secret-key-change-this-in-production"
JWT_SECRET = os.environ.get("JWT_SECRET") or DEFAULT_JWT_SECRET
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.environ.get("JWT_EXPIRY_HOURS", "24"))
DB_PATH = os.path.abspath(os.environ.get("CLASSFLOW_DB", "classflow.db"))
DB_URI  = os.environ.get("DATABASE_URL") or f"sqlite:///{DB_PATH}"
UPLOAD_DIR = os.path.abspath(os.environ.get("UPLOAD_DIR") or os.path.join(BASE_DIR, "uploads"))
MAX_UPLOAD_MB = int(os.environ.get("MAX_UPLOAD_MB", "25"))
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

DOWNLOAD_LINK_MAX_AGE = 60 * 60  # seconds

log = logging.getLogger("classflow")


def create_app(db_path=DB_URI, upload_dir=UPLOAD_DIR, jwt_secret=JWT_SECRET, app_env=APP_ENV):
    if jwt_secret == DEFAULT_JWT_SECRET:
        if app_env == "production":
            raise RuntimeError("JWT_SECRET must be set in production")
        log.warning("Using the default JWT secret; set JWT_SECRET before deploying")

    app = Flask(__name__)
    app.config["SECRET_KEY"] = APP_SECRET
    app.config["SQLALCHEMY_DATABASE_URI"] = db_path
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_MB * 1024 * 1024
    app.config["JWT_SECRET"] = jwt_secret
    app.config["JWT_EXPIRY_HOURS"] = JWT_EXPIRY_HOURS
    app.config["UPLOAD_DIR"] = upload_dir
    CORS(app, origins=CORS_ORIGINS,
         methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
         allow_headers=["Content-Type", "Authorization"])
    db.init_app(app)
    with app.app_context():
        db.create_all()
    return app

app = create_app()

# --------------------------------------------------------------------
# Envelope + errors
# --------------------------------------------------------------------
class ApiError(Exception):
    """Raised from views to short-circuit with an error envelope."""
    def __init__(self, message, status=400, errors=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.errors = errors


def ok(data=None, message="Success", status=200):
    return jsonify({"success": True, "message": message, "data": data}), status


def fail(message, status=400, errors=None):
    body = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    return jsonify(body), status


@app.errorhandler(ApiError)
def _handle_api_error(err):
    return fail(err.message, err.status, err.errors)


@app.errorhandler(HTTPException)
def _handle_http_error(err):
    if err.code == 404:
        return fail(f"Route not found: {request.method} {request.path}", 404)
    if err.code == 413:
        return fail(f"Upload exceeds {MAX_UPLOAD_MB} MB", 413)
    if err.code == 500:
        log.error("Unhandled error on %s %s", request.method, request.path,
                  exc_info=getattr(err, "original_exception", None))
        return fail("Internal server error", 500)
    return fail(err.description or err.name, err.code)


@app.errorhandler(SQLAlchemyError)
def _handle_db_error(err):
    db.session.rollback()
    log.exception("Database error on %s %s", request.method, request.path)
    return fail("Database error", 500)

# --------------------------------------------------------------------
# Tokens
# --------------------------------------------------------------------
def generate_token(user_id, email, role, expires_in=None):
    now = datetime.now(timezone.utc)
    lifetime = expires_in or timedelta(hours=current_app.config["JWT_EXPIRY_HOURS"])
    payload = {
        "iat": now,
        "exp": now + lifetime,
        "user_id": user_id,
        "email": email,
        "role": role,
    }
    return jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm=JWT_ALGORITHM)


def validate_token(token):
    """Payload dict for a well-signed, unexpired token; None otherwise."""
    try:
        return jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        log.info("Rejected expired token")
    except jwt.InvalidTokenError as e:
        log.warning("Rejected invalid token: %s", e)
    return None


def bearer_token():
    header = request.headers.get("Authorization", "")
    if header[:7].lower() == "bearer ":
        return header[7:].strip() or None
    return None


def download_signer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="material-download")

# --------------------------------------------------------------------
# Auth helpers
# --------------------------------------------------------------------
def _authenticate(token):
    if not token:
        raise ApiError("No token provided", 401)
    payload = validate_token(token)
    if not payload or payload.get("role") not in ACCOUNT_MODELS or "user_id" not in payload:
        raise ApiError("Invalid or expired token", 401)
    return payload


def require_user(*roles):
    def deco(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            g.user = _authenticate(bearer_token())
            if roles and g.user["role"] not in roles:
                raise ApiError("Access denied", 403)
            return fn(*args, **kwargs)
        return wrapper
    return deco


def current_account():
    """The account row behind the bearer token (404 once it is deleted)."""
    model = ACCOUNT_MODELS[g.user["role"]]
    acct = db.session.get(model, g.user["user_id"])
    if not acct:
        raise ApiError("User not found", 404)
    return acct


def is_admin():
    return g.user["role"] == "admin"


def ensure_teacher_owner(teacher_id):
    """Admins pass; teachers only for rows they created."""
    if is_admin():
        return
    if g.user["role"] == "teacher" and g.user["user_id"] == teacher_id:
        return
    raise ApiError("You can only modify your own content", 403)


def ensure_creator(role, account_id):
    if is_admin():
        return
    if g.user["role"] == role and g.user["user_id"] == account_id:
        return
    raise ApiError("You can only modify your own content", 403)

# --------------------------------------------------------------------
# Request parsing
# --------------------------------------------------------------------
def _json():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _payload():
    """Form fields for multipart requests, JSON body otherwise."""
    if request.form or request.files:
        return request.form.to_dict()
    return _json()


def _blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(data, *fields):
    missing = [f for f in fields if _blank(data.get(f))]
    if missing:
        raise ApiError("Missing required fields: " + ", ".join(missing), 422,
                       {f: "This field is required" for f in missing})


def _text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int_field(value, field, default=None, minimum=None):
    if _blank(value):
        return default
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be a whole number", 422, {field: "invalid"})
    if minimum is not None and n < minimum:
        raise ApiError(f"{field} must be at least {minimum}", 422, {field: "invalid"})
    return n


def _float_field(value, field):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ApiError(f"{field} must be a number", 422, {field: "invalid"})
    if not math.isfinite(number):
        raise ApiError(f"{field} must be a number", 422, {field: "invalid"})
    return number


def _parse_datetime(value, field):
    s = str(value or "").strip()
    try:
        dt = datetime.fromisoformat(s.replace("Z", ""))
    except ValueError:
        raise ApiError(f"{field} must be an ISO date", 422, {field: "invalid"})
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    if len(s) == 10:
        # bare date: due at the end of that day
        dt = dt.replace(hour=23, minute=59, second=59)
    return dt


def _parse_date(value, field):
    try:
        return date.fromisoformat(str(value or "").strip()[:10])
    except ValueError:
        raise ApiError(f"{field} must be YYYY-MM-DD", 422, {field: "invalid"})


def _parse_time(value, field):
    parts = str(value or "").strip().split(":")
    try:
        return datetime.strptime(":".join(parts[:2]), "%H:%M").strftime("%H:%M")
    except ValueError:
        raise ApiError(f"{field} must be HH:MM", 422, {field: "invalid"})


def get_or_404(model, obj_id, label):
    obj = db.session.get(model, obj_id)
    if obj is None:
        raise ApiError(f"{label} not found", 404)
    return obj


def _iso(dt):
    return dt.isoformat(sep=" ", timespec="seconds") if dt else None


def _account_name(role, account_id):
    model = ACCOUNT_MODELS.get(role)
    acct = db.session.get(model, account_id) if model else None
    return acct.name if acct else None


def _percent(part, whole, ndigits=0):
    if not whole:
        return 0
    value = round(part / whole * 100, ndigits)
    return int(value) if ndigits == 0 else value


def _mean(values, ndigits=1):
    values = list(values)
    if not values:
        return 0
    value = round(sum(values) / len(values), ndigits)
    return int(value) if ndigits == 0 else value

# --------------------------------------------------------------------
# Uploads
# --------------------------------------------------------------------
FILE_TYPES = {
    "pdf": "pdf",
    "doc": "doc", "docx": "doc",
    "ppt": "slides", "pptx": "slides",
    "jpg": "image", "jpeg": "image", "png": "image", "gif": "image",
    "mp3": "audio", "wav": "audio",
}


def file_type_for(filename):
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    return FILE_TYPES.get(ext, "pdf")


def save_upload(storage, subdir):
    """Store an uploaded file; returns (disk_path, public_url)."""
    filename = secure_filename(storage.filename or "")
    if not filename:
        raise ApiError("Invalid file name", 422, {"file": "invalid"})
    stored = f"{uuid.uuid4().hex[:12]}_{filename}"
    folder = os.path.join(current_app.config["UPLOAD_DIR"], subdir)
    os.makedirs(folder, exist_ok=True)
    path = os.path.join(folder, stored)
    storage.save(path)
    return path, f"/uploads/{subdir}/{stored}"


def upload_disk_path(public_url):
    """Map a /uploads/... URL to a file inside the upload dir, or None."""
    if not public_url or not public_url.startswith("/uploads/"):
        return None
    root = os.path.realpath(current_app.config["UPLOAD_DIR"])
    path = os.path.realpath(os.path.join(root, public_url[len("/uploads/"):]))
    if not path.startswith(root + os.sep):
        return None
    return path


def remove_upload(public_url):
    path = upload_disk_path(public_url)
    if path and os.path.isfile(path):
        os.remove(path)
        log.info("Removed stored file %s", public_url)


@app.route("/uploads/<path:filename>")
def uploaded_file(filename):
    return send_from_directory(current_app.config["UPLOAD_DIR"], filename)

# --------------------------------------------------------------------
# Notifications fan-out
# --------------------------------------------------------------------
def _preview(text, n=100):
    text = text or ""
    return text if len(text) <= n else text[:n] + "..."


def student_ids(semester=None):
    q = db.session.query(Student.id)
    if semester is not None:
        q = q.filter(Student.semester == semester)
    return [row[0] for row in q.all()]


def teacher_ids():
    return [row[0] for row in db.session.query(Teacher.id).all()]


def admin_ids():
    return [row[0] for row in db.session.query(Admin.id).all()]


def notify(recipients, ntype, title, message, link):
    """Insert one notification per (role, id) recipient.

    Runs after the originating write has been committed; a failure here is
    logged and does not undo that write.
    """
    recipients = list(recipients)
    if not recipients:
        return 0
    try:
        for role, uid in recipients:
            db.session.add(Notification(user_id=uid, user_role=role, type=ntype,
                                        title=title, message=message, link=link))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        log.exception("Notification fan-out failed for %r", title)
        return 0
    log.info("Notified %d recipient(s): %s", len(recipients), title)
    return len(recipients)


def notify_students(ids, ntype, title, message, link):
    return notify([("student", i) for i in ids], ntype, title, message, link)


def notify_teachers(ids, ntype, title, message, link):
    return notify([("teacher", i) for i in ids], ntype, title, message, link)


def notify_admins(ntype, title, message, link):
    return notify([("admin", i) for i in admin_ids()], ntype, title, message, link)

# --------------------------------------------------------------------
# Auth
# --------------------------------------------------------------------
@app.post("/api/auth/login")
def auth_login():
    data = _json()
    require_fields(data, "email", "password", "role")
    role = str(data["role"]).strip().lower()
    model = ACCOUNT_MODELS.get(role)
    if not model:
        raise ApiError("Invalid role", 400)
    email = str(data["email"]).strip().lower()
    acct = model.query.filter(func.lower(model.email) == email).first()
    if not acct or not acct.check_password(str(data["password"])):
        log.warning("Failed login for %s as %s", email, role)
        raise ApiError("Invalid credentials", 401)
    token = generate_token(acct.id, acct.email, role)
    log.info("Login: %s #%d", role, acct.id)
    return ok({"token": token, "user": acct.to_dict()}, "Login successful")


@app.get("/api/auth/me")
@require_user()
def auth_me():
    return ok(current_account().to_dict())


@app.post("/api/auth/logout")
def auth_logout():
    # tokens are stateless; the client drops its copy
    return ok(None, "Logged out successfully")

# --------------------------------------------------------------------
# Students / Teachers
# --------------------------------------------------------------------
COMMON_FIELDS = ("name", "email", "phone", "gender", "address")
STUDENT_FIELDS = ("enrollment_no", "department")
TEACHER_FIELDS = ("subject_specialization", "qualification")


def _apply_account_fields(acct, data, text_fields):
    for field in text_fields:
        if field in data:
            value = _text(data[field])
            if field == "email" and value:
                value = value.lower()
            if field in ("name", "email") and not value:
                raise ApiError(f"{field} cannot be empty", 422, {field: "This field is required"})
            setattr(acct, field, value)
    if "dob" in data:
        acct.dob = None if _blank(data["dob"]) else _parse_date(data["dob"], "dob")
    if isinstance(acct, Student) and "semester" in data:
        acct.semester = _int_field(data["semester"], "semester", minimum=1) or acct.semester
    if isinstance(acct, Teacher) and "experience_years" in data:
        acct.experience_years = _int_field(data["experience_years"], "experience_years", minimum=0)
    if not _blank(data.get("password")):
        acct.set_password(str(data["password"]))


def _ensure_unique(model, acct, data):
    email = _text(data.get("email"))
    if email:
        clash = model.query.filter(func.lower(model.email) == email.lower(), model.id != acct.id).first()
        if clash:
            raise ApiError("Email already exists", 409, {"email": "taken"})
    if model is Student and _text(data.get("enrollment_no")):
        clash = Student.query.filter(Student.enrollment_no == _text(data["enrollment_no"]),
                                     Student.id != acct.id).first()
        if clash:
            raise ApiError("Enrollment number already exists", 409, {"enrollment_no": "taken"})


def _create_account(model, data, required, fields):
    require_fields(data, *required)
    acct = model()
    _ensure_unique(model, acct, data)
    _apply_account_fields(acct, data, fields)
    db.session.add(acct)
    db.session.commit()
    log.info("Created %s #%d", model.role, acct.id)
    return acct


def _update_account(acct, data, fields):
    _ensure_unique(type(acct), acct, data)
    _apply_account_fields(acct, data, fields)
    db.session.commit()
    return acct


@app.get("/api/students")
@require_user("admin", "teacher")
def students_list():
    q = Student.query
    semester = request.args.get("semester", type=int)
    if semester:
        q = q.filter(Student.semester == semester)
    return ok([s.to_dict() for s in q.order_by(Student.name.asc()).all()])


@app.get("/api/students/<int:sid>")
@require_user("admin", "teacher")
def students_show(sid):
    return ok(get_or_404(Student, sid, "Student").to_dict())


@app.post("/api/students")
@require_user("admin")
def students_create():
    acct = _create_account(Student, _json(),
                           ("name", "email", "password", "enrollment_no", "semester"),
                           COMMON_FIELDS + STUDENT_FIELDS)
    return ok(acct.to_dict(), "Student created successfully", 201)


@app.put("/api/students/<int:sid>")
@require_user("admin")
def students_update(sid):
    acct = _update_account(get_or_404(Student, sid, "Student"), _json(), COMMON_FIELDS + STUDENT_FIELDS)
    return ok(acct.to_dict(), "Student updated successfully")


@app.delete("/api/students/<int:sid>")
@require_user("admin")
def students_delete(sid):
    acct = get_or_404(Student, sid, "Student")
    db.session.delete(acct)
    db.session.commit()
    log.info("Deleted student #%d", sid)
    return ok(None, "Student deleted successfully")


@app.get("/api/teachers")
@require_user("admin", "teacher")
def teachers_list():
    return ok([t.to_dict() for t in Teacher.query.order_by(Teacher.name.asc()).all()])


@app.get("/api/teachers/<int:tid>")
@require_user("admin", "teacher")
def teachers_show(tid):
    return ok(get_or_404(Teacher, tid, "Teacher").to_dict())


@app.post("/api/teachers")
@require_user("admin")
def teachers_create():
    acct = _create_account(Teacher, _json(), ("name", "email", "password"),
                           COMMON_FIELDS + TEACHER_FIELDS)
    return ok(acct.to_dict(), "Teacher created successfully", 201)


@app.put("/api/teachers/<int:tid>")
@require_user("admin")
def teachers_update(tid):
    acct = _update_account(get_or_404(Teacher, tid, "Teacher"), _json(), COMMON_FIELDS + TEACHER_FIELDS)
    return ok(acct.to_dict(), "Teacher updated successfully")


@app.delete("/api/teachers/<int:tid>")
@require_user("admin")
def teachers_delete(tid):
    acct = get_or_404(Teacher, tid, "Teacher")
    db.session.delete(acct)
    db.session.commit()
    log.info("Deleted teacher #%d", tid)
    return ok(None, "Teacher deleted successfully")

# --------------------------------------------------------------------
# Announcements
# --------------------------------------------------------------------
AUDIENCES = ("all", "student", "teacher")
ANNOUNCEMENT_LINKS = {"student": "/student/announcements", "teacher": "/teacher/announcements"}


def visible_announcements():
    q = Announcement.query
    role = g.user["role"]
    if role == "student":
        q = q.filter(Announcement.target_audience.in_(("student", "all")))
    elif role == "teacher":
        q = q.filter(or_(
            Announcement.target_audience.in_(("teacher", "all")),
            and_(Announcement.created_by_role == "teacher",
                 Announcement.created_by_id == g.user["user_id"]),
        ))
    return q.order_by(Announcement.created_at.desc(), Announcement.id.desc())


def _announcement_dict(a):
    return a.to_dict(creator_name=_account_name(a.created_by_role, a.created_by_id))


def _notify_announcement(a):
    title = f"New Announcement: {a.title}"
    message = _preview(a.content)
    if a.target_audience in ("all", "student"):
        notify_students(student_ids(), "announcement", title, message, ANNOUNCEMENT_LINKS["student"])
    if a.target_audience in ("all", "teacher"):
        notify_teachers(teacher_ids(), "announcement", title, message, ANNOUNCEMENT_LINKS["teacher"])


def _audience(value):
    audience = (_text(value) or "all").lower()
    if audience not in AUDIENCES:
        raise ApiError("target_audience must be one of: " + ", ".join(AUDIENCES), 422,
                       {"target_audience": "invalid"})
    return audience


@app.get("/api/announcements")
@require_user()
def announcements_list():
    return ok([_announcement_dict(a) for a in visible_announcements().all()])


@app.get("/api/announcements/<int:aid>")
@require_user()
def announcements_show(aid):
    a = visible_announcements().filter(Announcement.id == aid).first()
    if not a:
        raise ApiError("Announcement not found", 404)
    return ok(_announcement_dict(a))


@app.post("/api/announcements")
@require_user("admin", "teacher")
def announcements_create():
    data = _json()
    require_fields(data, "title", "content")
    a = Announcement(
        title=_text(data["title"]),
        content=str(data["content"]).strip(),
        target_audience=_audience(data.get("target_audience")),
        created_by_role=g.user["role"],
        created_by_id=g.user["user_id"],
    )
    db.session.add(a)
    db.session.commit()
    log.info("Announcement #%d created by %s #%d", a.id, a.created_by_role, a.created_by_id)
    _notify_announcement(a)
    return ok(_announcement_dict(a), "Announcement created successfully", 201)


@app.put("/api/announcements/<int:aid>")
@require_user("admin", "teacher")
def announcements_update(aid):
    a = get_or_404(Announcement, aid, "Announcement")
    ensure_creator(a.created_by_role, a.created_by_id)
    data = _json()
    for field in ("title", "content"):
        if field in data:
            if _blank(data[field]):
                raise ApiError(f"{field} cannot be empty", 422, {field: "This field is required"})
            setattr(a, field, str(data[field]).strip())
    if "target_audience" in data:
        a.target_audience = _audience(data["target_audience"])
    db.session.commit()
    return ok(_announcement_dict(a), "Announcement updated successfully")


@app.delete("/api/announcements/<int:aid>")
@require_user("admin", "teacher")
def announcements_delete(aid):
    a = get_or_404(Announcement, aid, "Announcement")
    ensure_creator(a.created_by_role, a.created_by_id)
    db.session.delete(a)
    db.session.commit()
    return ok(None, "Announcement deleted successfully")

# --------------------------------------------------------------------
# Assignments
# --------------------------------------------------------------------
def _semester_filter(column, semester):
    # rows without a semester are open to every semester
    return or_(column == semester, column.is_(None))


def _student_can_see_assignment(a, student):
    return a.semester is None or a.semester == student.semester


def _notify_assignment(a):
    ids = student_ids(a.semester)
    notify_students(ids, "assignment", f"New Assignment: {a.title}",
                    f"Due: {a.due_date.strftime('%b %d, %Y')}", "/student/assignments")


def _apply_assignment_fields(a, data):
    if "title" in data:
        if _blank(data["title"]):
            raise ApiError("title cannot be empty", 422, {"title": "This field is required"})
        a.title = _text(data["title"])
    if "description" in data:
        a.description = _text(data["description"])
    if "due_date" in data:
        a.due_date = _parse_datetime(data["due_date"], "due_date")
    if "total_marks" in data:
        a.total_marks = _int_field(data["total_marks"], "total_marks", default=100, minimum=1)
    if "semester" in data:
        a.semester = _int_field(data["semester"], "semester", minimum=1)
    attachment = request.files.get("attachment")
    if attachment and attachment.filename:
        old = a.attachment_path
        _, a.attachment_path = save_upload(attachment, "assignments")
        if old:
            remove_upload(old)


@app.get("/api/assignments")
@require_user()
def assignments_list():
    q = Assignment.query
    student = None
    if g.user["role"] == "student":
        student = current_account()
        q = q.filter(_semester_filter(Assignment.semester, student.semester))
    else:
        if g.user["role"] == "teacher":
            q = q.filter(Assignment.created_by_teacher_id == g.user["user_id"])
        semester = request.args.get("semester", type=int)
        if semester:
            q = q.filter(Assignment.semester == semester)
    items = []
    for a in q.order_by(Assignment.due_date.asc(), Assignment.id.asc()).all():
        d = a.to_dict()
        if student:
            sub = AssignmentSubmission.query.filter_by(assignment_id=a.id, student_id=student.id).first()
            d["submission"] = sub.to_dict() if sub else None
        items.append(d)
    return ok(items)


@app.get("/api/assignments/my-submissions")
@require_user("student")
def assignments_my_submissions():
    subs = (AssignmentSubmission.query
            .filter_by(student_id=g.user["user_id"])
            .order_by(AssignmentSubmission.submitted_at.desc())
            .all())
    items = []
    for s in subs:
        d = s.to_dict()
        d.update(assignment_title=s.assignment.title,
                 max_marks=s.assignment.total_marks,
                 due_date=_iso(s.assignment.due_date))
        items.append(d)
    return ok(items)


@app.get("/api/assignments/<int:aid>")
@require_user()
def assignments_show(aid):
    a = get_or_404(Assignment, aid, "Assignment")
    if g.user["role"] == "student" and not _student_can_see_assignment(a, current_account()):
        raise ApiError("Assignment not found", 404)
    return ok(a.to_dict())


@app.post("/api/assignments")
@require_user("teacher")
def assignments_create():
    data = _payload()
    require_fields(data, "title", "due_date")
    a = Assignment(created_by_teacher_id=g.user["user_id"], total_marks=100)
    _apply_assignment_fields(a, data)
    db.session.add(a)
    db.session.commit()
    log.info("Assignment #%d created by teacher #%d", a.id, a.created_by_teacher_id)
    _notify_assignment(a)
    return ok(a.to_dict(), "Assignment created successfully", 201)


@app.route("/api/assignments/<int:aid>/update", methods=["POST"])
@app.route("/api/assignments/<int:aid>", methods=["PUT"])
@require_user("admin", "teacher")
def assignments_update(aid):
    a = get_or_404(Assignment, aid, "Assignment")
    ensure_teacher_owner(a.created_by_teacher_id)
    _apply_assignment_fields(a, _payload())
    db.session.commit()
    return ok(a.to_dict(), "Assignment updated successfully")


@app.delete("/api/assignments/<int:aid>")
@require_user("admin", "teacher")
def assignments_delete(aid):
    a = get_or_404(Assignment, aid, "Assignment")
    ensure_teacher_owner(a.created_by_teacher_id)
    attachment = a.attachment_path
    db.session.delete(a)
    db.session.commit()
    if attachment:
        remove_upload(attachment)
    log.info("Deleted assignment #%d", aid)
    return ok(None, "Assignment deleted successfully")


@app.get("/api/assignments/<int:aid>/submissions")
@require_user("admin", "teacher")
def assignments_submissions(aid):
    a = get_or_404(Assignment, aid, "Assignment")
    ensure_teacher_owner(a.created_by_teacher_id)
    items = []
    for s in sorted(a.submissions, key=lambda s: s.submitted_at, reverse=True):
        d = s.to_dict()
        d.update(student_name=s.student.name, enrollment_no=s.student.enrollment_no)
        items.append(d)
    return ok(items)


@app.post("/api/assignments/<int:aid>/submit")
@require_user("student")
def assignments_submit(aid):
    a = get_or_404(Assignment, aid, "Assignment")
    student = current_account()
    if not _student_can_see_assignment(a, student):
        raise ApiError("This assignment is not for your semester", 403)
    data = _payload()
    file_url = _text(data.get("file_path"))
    upload = request.files.get("file")
    if upload and upload.filename:
        _, file_url = save_upload(upload, "submissions")
    text = _text(data.get("submission_text"))
    if not text and not file_url:
        raise ApiError("Provide submission_text or a file", 422,
                       {"submission_text": "This field is required"})

    sub = AssignmentSubmission.query.filter_by(assignment_id=a.id, student_id=student.id).first()
    if sub and sub.status == "graded":
        raise ApiError("Submission has already been graded", 409)
    if not sub:
        sub = AssignmentSubmission(assignment_id=a.id, student_id=student.id)
        db.session.add(sub)
    sub.submission_text = text
    sub.file_url = file_url
    sub.status = "submitted"
    sub.submitted_at = datetime.now()
    db.session.commit()
    log.info("Student #%d submitted assignment #%d", student.id, a.id)
    return ok(sub.to_dict(), "Assignment submitted successfully", 201)


def _grade(sub, data):
    a = sub.assignment
    if _blank(data.get("marks")):
        raise ApiError("Missing required fields: marks", 422, {"marks": "This field is required"})
    marks = _float_field(data["marks"], "marks")
    if marks < 0 or marks > a.total_marks:
        raise ApiError(f"marks must be between 0 and {a.total_marks}", 422, {"marks": "out of range"})
    sub.marks_obtained = marks
    sub.feedback = _text(data.get("feedback"))
    sub.status = "graded"
    sub.graded_at = datetime.now()
    db.session.commit()
    notify_students([sub.student_id], "grade", f"Assignment Graded: {a.title}",
                    f"You received {marks:g} marks.", "/student/marks")
    return sub


@app.put("/api/assignments/submissions/<int:sid>/grade")
@require_user("admin", "teacher")
def assignments_grade(sid):
    sub = get_or_404(AssignmentSubmission, sid, "Submission")
    ensure_teacher_owner(sub.assignment.created_by_teacher_id)
    return ok(_grade(sub, _json()).to_dict(), "Submission graded successfully")


@app.post("/api/assignments/<int:aid>/grade-student")
@require_user("admin", "teacher")
def assignments_grade_student(aid):
    a = get_or_404(Assignment, aid, "Assignment")
    ensure_teacher_owner(a.created_by_teacher_id)
    data = _json()
    require_fields(data, "student_id", "marks")
    student = get_or_404(Student, _int_field(data["student_id"], "student_id"), "Student")
    sub = AssignmentSubmission.query.filter_by(assignment_id=a.id, student_id=student.id).first()
    if not sub:
        sub = AssignmentSubmission(assignment=a, student=student,
                                   submission_text="Teacher Manual Grading")
        db.session.add(sub)
        db.session.flush()
    return ok(_grade(sub, data).to_dict(), "Student graded successfully")

# --------------------------------------------------------------------
# Quizzes
# --------------------------------------------------------------------
def _quiz_values(data):
    """Accepts the SPA's camelCase names and the column names."""
    out = {}
    if "title" in data:
        if _blank(data["title"]):
            raise ApiError("title cannot be empty", 422, {"title": "This field is required"})
        out["title"] = _text(data["title"])
    if "description" in data:
        out["description"] = _text(data["description"])
    for key in ("duration", "duration_minutes"):
        if key in data:
            out["duration_minutes"] = _int_field(data[key], "duration", minimum=1)
    for key in ("maxMarks", "total_marks"):
        if key in data:
            out["total_marks"] = _int_field(data[key], "maxMarks", minimum=1)
    if "semester" in data:
        out["semester"] = _int_field(data["semester"], "semester", default=1, minimum=1)
    return out


def _question_values(data, current=None):
    text = data.get("question", current.question_text if current else None)
    options = data.get("options", current.options if current else None)
    correct = data.get("correctAnswer", current.correct_answer if current else None)
    marks = data.get("marks", current.marks if current else 1)
    if _blank(text):
        raise ApiError("question is required", 422, {"question": "This field is required"})
    if not isinstance(options, list) or len(options) < 2 or any(_blank(o) for o in options):
        raise ApiError("options must list at least two choices", 422, {"options": "invalid"})
    correct = _int_field(correct, "correctAnswer")
    if correct is None or not 0 <= correct < len(options):
        raise ApiError("correctAnswer must index one of the options", 422, {"correctAnswer": "invalid"})
    return {
        "question_text": str(text).strip(),
        "options": [str(o).strip() for o in options],
        "correct_answer": correct,
        "marks": _int_field(marks, "marks", default=1, minimum=0),
    }


def grade_quiz_attempt(quiz, answers):
    """Score answers keyed by question position (questions in id order).

    Each question whose chosen option index equals correct_answer earns its
    marks; the sum is capped at the quiz total.
    """
    questions = list(quiz.questions)
    if isinstance(answers, list):
        answer_map = {str(i): a for i, a in enumerate(answers)}
    elif isinstance(answers, dict):
        answer_map = {str(k): v for k, v in answers.items()}
    else:
        answer_map = {}
    earned = 0
    for idx, q in enumerate(questions):
        raw = answer_map.get(str(idx))
        try:
            chosen = int(raw)
        except (TypeError, ValueError):
            chosen = None
        if chosen is not None and chosen == q.correct_answer:
            earned += q.marks
    return min(earned, quiz.total_marks)


def _quiz_for_write(qid):
    quiz = get_or_404(Quiz, qid, "Quiz")
    ensure_teacher_owner(quiz.created_by_teacher_id)
    return quiz


def _question_of(quiz, question_id):
    question = db.session.get(QuizQuestion, question_id)
    if not question or question.quiz_id != quiz.id:
        raise ApiError("Question not found", 404)
    return question


@app.get("/api/quizzes")
@require_user()
def quizzes_list():
    q = Quiz.query
    student = None
    if g.user["role"] == "student":
        student = current_account()
        q = q.filter(Quiz.semester == student.semester)
    else:
        semester = request.args.get("semester", type=int)
        if semester:
            q = q.filter(Quiz.semester == semester)
        if g.user["role"] == "teacher" and request.args.get("mine") in ("1", "true"):
            q = q.filter(Quiz.created_by_teacher_id == g.user["user_id"])
    attempted = set()
    if student:
        attempted = {row[0] for row in db.session.query(QuizAttempt.quiz_id)
                     .filter(QuizAttempt.student_id == student.id).all()}
    items = []
    for quiz in q.order_by(Quiz.created_at.desc(), Quiz.id.desc()).all():
        d = quiz.to_dict()
        d["question_count"] = len(quiz.questions)
        if student:
            d["attempted"] = quiz.id in attempted
        items.append(d)
    return ok(items)


@app.get("/api/quizzes/<int:qid>")
@require_user()
def quizzes_show(qid):
    quiz = get_or_404(Quiz, qid, "Quiz")
    if g.user["role"] == "student" and quiz.semester != current_account().semester:
        raise ApiError("Quiz not found", 404)
    d = quiz.to_dict()
    d["question_count"] = len(quiz.questions)
    return ok(d)


@app.post("/api/quizzes")
@require_user("teacher")
def quizzes_create():
    data = _json()
    require_fields(data, "title", "duration", "maxMarks")
    values = _quiz_values(data)
    values.setdefault("semester", 1)
    quiz = Quiz(created_by_teacher_id=g.user["user_id"], **values)
    db.session.add(quiz)
    db.session.commit()
    log.info("Quiz #%d created by teacher #%d", quiz.id, quiz.created_by_teacher_id)
    notify_students(student_ids(quiz.semester), "quiz", f"New Quiz Available: {quiz.title}",
                    f"Duration: {quiz.duration_minutes} minutes", "/student/quizzes")
    return ok(quiz.to_dict(), "Quiz created successfully", 201)


@app.put("/api/quizzes/<int:qid>")
@require_user("admin", "teacher")
def quizzes_update(qid):
    quiz = _quiz_for_write(qid)
    for key, value in _quiz_values(_json()).items():
        setattr(quiz, key, value)
    db.session.commit()
    return ok(quiz.to_dict(), "Quiz updated successfully")


@app.delete("/api/quizzes/<int:qid>")
@require_user("admin", "teacher")
def quizzes_delete(qid):
    quiz = _quiz_for_write(qid)
    db.session.delete(quiz)
    db.session.commit()
    log.info("Deleted quiz #%d", qid)
    return ok(None, "Quiz deleted successfully")


@app.get("/api/quizzes/<int:qid>/questions")
@require_user()
def quiz_questions_list(qid):
    quiz = get_or_404(Quiz, qid, "Quiz")
    reveal = g.user["role"] != "student"
    if not reveal and quiz.semester != current_account().semester:
        raise ApiError("Quiz not found", 404)
    return ok([q.to_dict(reveal=reveal) for q in quiz.questions])


@app.post("/api/quizzes/<int:qid>/questions")
@require_user("admin", "teacher")
def quiz_questions_add(qid):
    quiz = _quiz_for_write(qid)
    question = QuizQuestion(quiz_id=quiz.id, **_question_values(_json()))
    db.session.add(question)
    db.session.commit()
    return ok(question.to_dict(), "Question added successfully", 201)


@app.post("/api/quizzes/<int:qid>/questions/bulk")
@require_user("admin", "teacher")
def quiz_questions_bulk(qid):
    quiz = _quiz_for_write(qid)
    body = request.get_json(silent=True)
    items = body.get("questions") if isinstance(body, dict) else body
    if not isinstance(items, list) or not items:
        raise ApiError("Provide a non-empty list of questions", 422, {"questions": "invalid"})
    rows = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ApiError(f"Question {idx + 1} is not an object", 422, {"questions": idx})
        try:
            rows.append(QuizQuestion(quiz_id=quiz.id, **_question_values(item)))
        except ApiError as e:
            raise ApiError(f"Question {idx + 1}: {e.message}", 422, {"index": idx, "errors": e.errors})
    # validated up front so the insert is all-or-nothing
    db.session.add_all(rows)
    db.session.commit()
    log.info("Added %d question(s) to quiz #%d", len(rows), quiz.id)
    return ok({"count": len(rows)}, f"{len(rows)} questions added successfully", 201)


@app.put("/api/quizzes/<int:qid>/questions/<int:question_id>")
@require_user("admin", "teacher")
def quiz_questions_update(qid, question_id):
    quiz = _quiz_for_write(qid)
    question = _question_of(quiz, question_id)
    for key, value in _question_values(_json(), current=question).items():
        setattr(question, key, value)
    db.session.commit()
    return ok(question.to_dict(), "Question updated successfully")


@app.delete("/api/quizzes/<int:qid>/questions/<int:question_id>")
@require_user("admin", "teacher")
def quiz_questions_delete(qid, question_id):
    quiz = _quiz_for_write(qid)
    db.session.delete(_question_of(quiz, question_id))
    db.session.commit()
    return ok(None, "Question deleted successfully")


@app.post("/api/quizzes/<int:qid>/attempt")
@require_user("student")
def quizzes_attempt(qid):
    quiz = get_or_404(Quiz, qid, "Quiz")
    student = current_account()
    if quiz.semester != student.semester:
        raise ApiError("This quiz is not for your semester", 403)
    if QuizAttempt.query.filter_by(quiz_id=quiz.id, student_id=student.id).first():
        raise ApiError("You have already attempted this quiz", 409)
    answers = _json().get("answers")
    score = grade_quiz_attempt(quiz, answers)
    attempt = QuizAttempt(quiz_id=quiz.id, student_id=student.id, score=score,
                          total_marks=quiz.total_marks,
                          answers=answers if isinstance(answers, (dict, list)) else {})
    db.session.add(attempt)
    db.session.commit()
    log.info("Student #%d scored %s/%s on quiz #%d", student.id, score, quiz.total_marks, quiz.id)
    notify_students([student.id], "grade", f"Quiz Graded: {quiz.title}",
                    f"You scored {score:g}/{quiz.total_marks}.", "/student/marks")
    return ok({"id": attempt.id, "score": score, "total_marks": quiz.total_marks},
              "Quiz submitted successfully", 201)


@app.get("/api/student/quiz-attempts")
@require_user("student")
def student_quiz_attempts():
    attempts = (QuizAttempt.query.filter_by(student_id=g.user["user_id"])
                .order_by(QuizAttempt.submitted_at.desc()).all())
    items = []
    for at in attempts:
        d = at.to_dict()
        d.update(quiz_title=at.quiz.title, max_marks=at.quiz.total_marks,
                 duration_minutes=at.quiz.duration_minutes)
        items.append(d)
    return ok(items)


@app.get("/api/teacher/quiz-history")
@require_user("teacher")
def teacher_quiz_history():
    attempts = (QuizAttempt.query.join(Quiz)
                .filter(Quiz.created_by_teacher_id == g.user["user_id"])
                .order_by(QuizAttempt.submitted_at.desc()).all())
    items = []
    for at in attempts:
        d = at.to_dict()
        d.update(student_name=at.student.name, quiz_title=at.quiz.title,
                 max_marks=at.quiz.total_marks)
        items.append(d)
    return ok(items)

# --------------------------------------------------------------------
# Materials
# --------------------------------------------------------------------
def _material_dict(m):
    return m.to_dict(uploader_name=_account_name(m.uploaded_by_role, m.uploaded_by_id))


@app.get("/api/materials")
@require_user()
def materials_list():
    q = Material.query
    if g.user["role"] == "student":
        q = q.filter(Material.semester == current_account().semester)
    else:
        semester = request.args.get("semester", type=int)
        if semester:
            q = q.filter(Material.semester == semester)
    return ok([_material_dict(m) for m in q.order_by(Material.created_at.desc(), Material.id.desc()).all()])


@app.post("/api/materials")
@require_user("admin", "teacher")
def materials_create():
    data = _payload()
    require_fields(data, "title", "semester")
    m = Material(
        title=_text(data["title"]),
        description=_text(data.get("description")),
        semester=_int_field(data["semester"], "semester", minimum=1),
        uploaded_by_role=g.user["role"],
        uploaded_by_id=g.user["user_id"],
    )
    upload = request.files.get("file")
    if upload and upload.filename:
        m.file_path, m.file_url = save_upload(upload, "materials")
        m.file_type = file_type_for(upload.filename)
    else:
        m.file_url = _text(data.get("file_path"))
        m.file_path = upload_disk_path(m.file_url)
        m.file_type = _text(data.get("file_type")) or file_type_for(m.file_url)
    db.session.add(m)
    db.session.commit()
    log.info("Material #%d uploaded by %s #%d", m.id, m.uploaded_by_role, m.uploaded_by_id)
    notify_students(student_ids(m.semester), "material", f"New Study Material: {m.title}",
                    _preview(m.description or m.title), "/student/materials")
    return ok(_material_dict(m), "Material uploaded successfully", 201)


@app.delete("/api/materials/<int:mid>")
@require_user("admin", "teacher")
def materials_delete(mid):
    m = get_or_404(Material, mid, "Material")
    ensure_creator(m.uploaded_by_role, m.uploaded_by_id)
    file_url = m.file_url
    db.session.delete(m)
    db.session.commit()
    remove_upload(file_url)
    return ok(None, "Material deleted successfully")


@app.get("/api/materials/<int:mid>/link")
@require_user()
def materials_link(mid):
    m = get_or_404(Material, mid, "Material")
    if g.user["role"] == "student" and current_account().semester != m.semester:
        raise ApiError("Access denied", 403)
    sig = download_signer().dumps({"material_id": m.id})
    return ok({"url": f"/api/materials/{m.id}/download?sig={sig}", "expires_in": DOWNLOAD_LINK_MAX_AGE})


def _authorize_download(m):
    sig = request.args.get("sig")
    if sig:
        try:
            data = download_signer().loads(sig, max_age=DOWNLOAD_LINK_MAX_AGE)
        except SignatureExpired:
            raise ApiError("Download link has expired", 401)
        except BadSignature:
            raise ApiError("Invalid download link", 401)
        if data.get("material_id") != m.id:
            raise ApiError("Invalid download link", 401)
        return
    g.user = _authenticate(bearer_token() or request.args.get("token"))
    if g.user["role"] == "student" and current_account().semester != m.semester:
        raise ApiError("Access denied", 403)


@app.get("/api/materials/<int:mid>/download")
def materials_download(mid):
    m = get_or_404(Material, mid, "Material")
    _authorize_download(m)
    path = m.file_path or upload_disk_path(m.file_url)
    if not path or not os.path.isfile(path):
        raise ApiError("File not found", 404)
    ext = os.path.splitext(path)[1]
    name = (secure_filename(m.title) or "material") + ext
    return send_file(path, as_attachment=True, download_name=name)

# --------------------------------------------------------------------
# Schedules
# --------------------------------------------------------------------
SEMESTER_AUDIENCE = re.compile(r"^Students \(Sem (\d+)\)$")


def _schedule_audience(value):
    audience = _text(value) or "Everyone"
    if audience in ("Everyone", "Students", "Teachers") or SEMESTER_AUDIENCE.match(audience):
        return audience
    raise ApiError("target_audience must be Everyone, Students, Teachers or Students (Sem N)", 422,
                   {"target_audience": "invalid"})


def audiences_for_student(semester):
    return ("Everyone", "Students", f"Students (Sem {semester})")


def audiences_for_teacher():
    return ("Everyone", "Teachers")


def schedules_between(start, end, audiences=None):
    q = Schedule.query.filter(Schedule.schedule_date >= start, Schedule.schedule_date <= end)
    if audiences is not None:
        q = q.filter(Schedule.target_audience.in_(audiences))
    return q.order_by(Schedule.schedule_date.asc(), Schedule.schedule_time.asc()).all()


def _notify_schedule(s):
    title = f"New Schedule: {s.title}"
    message = f"New schedule added for {s.schedule_date.isoformat()} at {s.schedule_time}"
    audience = s.target_audience
    if audience in ("Everyone", "Teachers"):
        notify_teachers(teacher_ids(), "schedule", title, message, "/teacher/assignments")
    if audience in ("Everyone", "Students"):
        notify_students(student_ids(), "schedule", title, message, "/student/dashboard")
    match = SEMESTER_AUDIENCE.match(audience)
    if match:
        notify_students(student_ids(int(match.group(1))), "schedule", title, message, "/student/dashboard")


@app.get("/api/schedules")
@require_user()
def schedules_list():
    q = Schedule.query
    role = g.user["role"]
    if role == "student":
        q = q.filter(Schedule.target_audience.in_(audiences_for_student(current_account().semester)))
    elif role == "teacher":
        q = q.filter(Schedule.target_audience.in_(audiences_for_teacher()))
    semester = request.args.get("semester", type=int)
    if semester and role != "student":
        q = q.filter(Schedule.target_audience.in_(audiences_for_student(semester)))
    items = q.order_by(Schedule.schedule_date.asc(), Schedule.schedule_time.asc()).all()
    return ok([s.to_dict() for s in items])


@app.post("/api/schedules")
@require_user("admin")
def schedules_create():
    data = _json()
    require_fields(data, "title", "schedule_date", "schedule_time")
    s = Schedule(
        title=_text(data["title"]),
        description=_text(data.get("description")),
        schedule_date=_parse_date(data["schedule_date"], "schedule_date"),
        schedule_time=_parse_time(data["schedule_time"], "schedule_time"),
        location=_text(data.get("location")),
        type=_text(data.get("type")) or "class",
        target_audience=_schedule_audience(data.get("target_audience")),
        created_by_admin_id=g.user["user_id"],
    )
    db.session.add(s)
    db.session.commit()
    log.info("Schedule #%d created for %s", s.id, s.target_audience)
    _notify_schedule(s)
    return ok(s.to_dict(), "Schedule created successfully", 201)


@app.delete("/api/schedules/<int:sid>")
@require_user("admin")
def schedules_delete(sid):
    s = get_or_404(Schedule, sid, "Schedule")
    db.session.delete(s)
    db.session.commit()
    return ok(None, "Schedule deleted successfully")

# --------------------------------------------------------------------
# Feedback
# --------------------------------------------------------------------
@app.get("/api/feedback")
@require_user()
def feedback_list():
    q = Feedback.query
    if g.user["role"] == "student":
        q = q.filter(Feedback.student_id == g.user["user_id"])
    return ok([f.to_dict() for f in q.order_by(Feedback.created_at.desc(), Feedback.id.desc()).all()])


@app.post("/api/feedback")
@require_user("student")
def feedback_create():
    data = _json()
    require_fields(data, "subject", "message")
    student = current_account()
    f = Feedback(student_id=student.id, subject=_text(data["subject"]),
                 message=str(data["message"]).strip())
    db.session.add(f)
    db.session.commit()
    notify_admins("feedback", "New Feedback Received", f"{student.name}: {f.subject}", "/admin/feedback")
    return ok(f.to_dict(), "Feedback submitted successfully", 201)


@app.put("/api/feedback/<int:fid>/respond")
@require_user("admin", "teacher")
def feedback_respond(fid):
    f = get_or_404(Feedback, fid, "Feedback")
    data = _json()
    require_fields(data, "response")
    f.response = str(data["response"]).strip()
    f.status = "reviewed"
    f.responded_at = datetime.now()
    db.session.commit()
    notify_students([f.student_id], "feedback", "Feedback Response Received",
                    _preview(f.response), "/student/feedback")
    return ok(f.to_dict(), "Response submitted successfully")

# --------------------------------------------------------------------
# Startup ideas
# --------------------------------------------------------------------
STARTUP_STATUSES = ("pending", "approved", "rejected")
STARTUP_TEXT_FIELDS = {
    "briefDescription": "brief_description",
    "problemStatement": "problem_statement",
    "solutionOverview": "solution_overview",
    "targetMarket": "target_market",
    "businessModel": "business_model",
    "fundingRequired": "funding_required",
    "currentStage": "current_stage",
}


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list):
        return value
    return [value]


@app.get("/api/startups")
@require_user()
def startups_list():
    q = Startup.query
    if g.user["role"] == "student":
        q = q.filter(Startup.student_id == g.user["user_id"])
    return ok([s.to_dict() for s in q.order_by(Startup.created_at.desc(), Startup.id.desc()).all()])


@app.post("/api/startups")
@require_user("student")
def startups_create():
    data = _json()
    if _blank(data.get("title")) or _blank(data.get("category")):
        raise ApiError("Incomplete data.", 400)
    student = current_account()
    s = Startup(student_id=student.id, title=_text(data["title"]), category=_text(data["category"]),
                team_size=_int_field(data.get("teamSize"), "teamSize", minimum=1),
                tags=_as_list(data.get("tags")), attachments=_as_list(data.get("attachments")),
                status="pending")
    for key, column in STARTUP_TEXT_FIELDS.items():
        setattr(s, column, _text(data.get(key, data.get(column))))
    db.session.add(s)
    db.session.commit()
    log.info("Startup idea #%d submitted by student #%d", s.id, student.id)
    notify_admins("startup_submission", "New Startup Idea Submitted",
                  f'{student.name} submitted "{s.title}".', "/admin/startups")
    return ok(s.to_dict(), "Startup idea submitted successfully", 201)


@app.put("/api/startups/<int:sid>/review")
@require_user("admin")
def startups_review(sid):
    s = get_or_404(Startup, sid, "Startup idea")
    data = _json()
    status = (_text(data.get("status")) or "").lower()
    if status not in STARTUP_STATUSES:
        raise ApiError("status must be one of: " + ", ".join(STARTUP_STATUSES), 422, {"status": "invalid"})
    s.status = status
    s.admin_remarks = _text(data.get("adminRemarks", data.get("feedback")))
    s.reviewed_at = datetime.now()
    db.session.commit()
    notify_students([s.student_id], "startup_review", "Startup Idea Reviewed",
                    f'Your startup idea "{s.title}" has been marked as {status.capitalize()}.',
                    "/student/startup")
    return ok(s.to_dict(), "Startup idea reviewed successfully")

# --------------------------------------------------------------------
# Notifications
# --------------------------------------------------------------------
def _own_notifications():
    return Notification.query.filter_by(user_id=g.user["user_id"], user_role=g.user["role"])


def _own_notification(nid):
    n = get_or_404(Notification, nid, "Notification")
    if n.user_id != g.user["user_id"] or n.user_role != g.user["role"]:
        raise ApiError("Access denied", 403)
    return n


@app.get("/api/notifications")
@require_user()
def notifications_list():
    items = (_own_notifications()
             .order_by(Notification.created_at.desc(), Notification.id.desc())
             .limit(50).all())
    return ok([n.to_dict() for n in items])


@app.get("/api/notifications/unread-count")
@require_user()
def notifications_unread_count():
    return ok({"count": _own_notifications().filter_by(is_read=False).count()})


@app.put("/api/notifications/<int:nid>/read")
@require_user()
def notifications_read(nid):
    n = _own_notification(nid)
    n.is_read = True
    db.session.commit()
    return ok(n.to_dict(), "Notification marked as read")


@app.put("/api/notifications/mark-all-read")
@require_user()
def notifications_read_all():
    count = _own_notifications().filter_by(is_read=False).update({"is_read": True})
    db.session.commit()
    return ok({"count": count}, "All notifications marked as read")


@app.delete("/api/notifications/<int:nid>")
@require_user()
def notifications_delete(nid):
    db.session.delete(_own_notification(nid))
    db.session.commit()
    return ok(None, "Notification deleted")

# --------------------------------------------------------------------
# Syllabus
# --------------------------------------------------------------------
def _syllabus_for(teacher_id):
    topics = (SyllabusTopic.query.filter_by(teacher_id=teacher_id)
              .order_by(SyllabusTopic.id.asc()).all())
    subtopics = [st for t in topics for st in t.subtopics]
    return {"topics": [t.to_dict() for t in topics],
            "subtopics": [st.to_dict() for st in subtopics]}


def _own_topic(topic_id):
    topic = get_or_404(SyllabusTopic, topic_id, "Topic")
    ensure_teacher_owner(topic.teacher_id)
    return topic


def _own_subtopic(subtopic_id):
    sub = get_or_404(SyllabusSubtopic, subtopic_id, "Subtopic")
    ensure_teacher_owner(sub.parent.teacher_id)
    return sub


@app.get("/api/syllabus")
@require_user("teacher")
def syllabus_get():
    return ok(_syllabus_for(g.user["user_id"]))


@app.post("/api/syllabus/topics")
@require_user("teacher")
def syllabus_topic_create():
    data = _json()
    require_fields(data, "title")
    topic = SyllabusTopic(teacher_id=g.user["user_id"], title=_text(data["title"]),
                          description=_text(data.get("description")), weeks=_text(data.get("weeks")))
    db.session.add(topic)
    db.session.commit()
    return ok(topic.to_dict(), "Topic created successfully", 201)


@app.put("/api/syllabus/topics/<int:tid>")
@require_user("admin", "teacher")
def syllabus_topic_update(tid):
    topic = _own_topic(tid)
    data = _json()
    if "title" in data:
        if _blank(data["title"]):
            raise ApiError("title cannot be empty", 422, {"title": "This field is required"})
        topic.title = _text(data["title"])
    for field in ("description", "weeks"):
        if field in data:
            setattr(topic, field, _text(data[field]))
    db.session.commit()
    return ok(topic.to_dict(), "Topic updated successfully")


@app.delete("/api/syllabus/topics/<int:tid>")
@require_user("admin", "teacher")
def syllabus_topic_delete(tid):
    db.session.delete(_own_topic(tid))
    db.session.commit()
    return ok(None, "Topic deleted successfully")


@app.patch("/api/syllabus/topics/<int:tid>/toggle")
@require_user("admin", "teacher")
def syllabus_topic_toggle(tid):
    topic = _own_topic(tid)
    topic.completed = not topic.completed
    topic.updated_at = datetime.now()
    db.session.commit()
    return ok(topic.to_dict(), "Topic status updated")


@app.post("/api/syllabus/subtopics")
@require_user("teacher")
def syllabus_subtopic_create():
    data = _json()
    require_fields(data, "title", "parentId")
    parent = _own_topic(_int_field(data["parentId"], "parentId"))
    sub = SyllabusSubtopic(parent_id=parent.id, title=_text(data["title"]),
                           description=_text(data.get("description")))
    db.session.add(sub)
    parent.updated_at = datetime.now()
    db.session.commit()
    return ok(sub.to_dict(), "Subtopic created successfully", 201)


@app.put("/api/syllabus/subtopics/<int:stid>")
@require_user("admin", "teacher")
def syllabus_subtopic_update(stid):
    sub = _own_subtopic(stid)
    data = _json()
    if "title" in data:
        if _blank(data["title"]):
            raise ApiError("title cannot be empty", 422, {"title": "This field is required"})
        sub.title = _text(data["title"])
    if "description" in data:
        sub.description = _text(data["description"])
    if not _blank(data.get("parentId")):
        sub.parent_id = _own_topic(_int_field(data["parentId"], "parentId")).id
    db.session.commit()
    return ok(sub.to_dict(), "Subtopic updated successfully")


@app.delete("/api/syllabus/subtopics/<int:stid>")
@require_user("admin", "teacher")
def syllabus_subtopic_delete(stid):
    db.session.delete(_own_subtopic(stid))
    db.session.commit()
    return ok(None, "Subtopic deleted successfully")


@app.patch("/api/syllabus/subtopics/<int:stid>/toggle")
@require_user("admin", "teacher")
def syllabus_subtopic_toggle(stid):
    sub = _own_subtopic(stid)
    sub.completed = not sub.completed
    sub.parent.updated_at = datetime.now()
    db.session.commit()
    return ok(sub.to_dict(), "Subtopic status updated")


@app.get("/api/admin/syllabus-progress")
@require_user("admin")
def admin_syllabus_progress():
    items = []
    for t in Teacher.query.order_by(Teacher.name.asc()).all():
        topics = t.topics
        completed = sum(1 for tp in topics if tp.completed)
        last = max((tp.updated_at for tp in topics), default=None)
        items.append({
            "teacher": {"id": t.id, "name": t.name, "email": t.email},
            "total_topics": len(topics),
            "completed_topics": completed,
            "progress_percentage": _percent(completed, len(topics)),
            "last_updated": _iso(last),
        })
    return ok(items)


@app.get("/api/admin/syllabus/<int:teacher_id>")
@require_user("admin")
def admin_syllabus_for_teacher(teacher_id):
    teacher = get_or_404(Teacher, teacher_id, "Teacher")
    data = _syllabus_for(teacher.id)
    data["teacher"] = {"id": teacher.id, "name": teacher.name, "email": teacher.email}
    return ok(data)

# --------------------------------------------------------------------
# Dashboards
# --------------------------------------------------------------------
def _week_bounds(today):
    monday = today - timedelta(days=today.weekday())
    return monday, monday + timedelta(days=6)


def _attempt_pct(at):
    return at.score / at.total_marks * 100 if at.total_marks else 0


def _submission_pct(sub):
    total = sub.assignment.total_marks
    return (sub.marks_obtained or 0) / total * 100 if total else 0


@app.get("/api/dashboard/stats")
@require_user("admin")
def dashboard_admin():
    today = date.today()
    month_start = datetime(today.year, today.month, 1)
    recent = Announcement.query.order_by(Announcement.created_at.desc(), Announcement.id.desc()).limit(5).all()
    return ok({
        "totalStudents": Student.query.count(),
        "totalTeachers": Teacher.query.count(),
        "monthlyAnnouncements": Announcement.query.filter(Announcement.created_at >= month_start).count(),
        "pendingFeedback": Feedback.query.filter_by(status="pending").count(),
        "averageScore": _mean(_attempt_pct(at) for at in QuizAttempt.query.all()),
        "recentAnnouncements": [
            {"title": a.title, "created_at": _iso(a.created_at), "created_by_role": a.created_by_role}
            for a in recent
        ],
        "thisWeekSchedule": [s.to_dict() for s in schedules_between(today, today + timedelta(days=7))],
    })


@app.get("/api/dashboard/student-stats")
@require_user("student")
def dashboard_student():
    student = current_account()
    now = datetime.now()
    in_semester = _semester_filter(Assignment.semester, student.semester)
    assignments = Assignment.query.filter(in_semester).all()
    submitted_ids = {s.assignment_id for s in student.submissions}
    graded = [s for s in student.submissions if s.status == "graded"]
    attempts = list(student.quiz_attempts)
    quizzes_total = Quiz.query.filter(Quiz.semester == student.semester).count()
    quizzes_done = sum(1 for at in attempts if at.quiz.semester == student.semester)

    upcoming = (Assignment.query.filter(in_semester, Assignment.due_date >= now)
                .order_by(Assignment.due_date.asc()).limit(3).all())
    announcements = (Announcement.query.filter(Announcement.target_audience.in_(("student", "all")))
                     .order_by(Announcement.created_at.desc(), Announcement.id.desc()).limit(2).all())
    monday, sunday = _week_bounds(now.date())
    return ok({
        "overallGrade": _mean([_submission_pct(s) for s in graded] + [_attempt_pct(at) for at in attempts], 0),
        "assignmentsDue": sum(1 for a in assignments
                              if now <= a.due_date <= now + timedelta(days=7) and a.id not in submitted_ids),
        "materialsCount": Material.query.filter(Material.semester == student.semester).count(),
        "upcomingAssignments": [
            {"id": a.id, "title": a.title, "description": a.description,
             "dueDate": _iso(a.due_date), "maxMarks": a.total_marks}
            for a in upcoming
        ],
        "recentAnnouncements": [
            {"id": a.id, "title": a.title, "content": a.content, "createdAt": _iso(a.created_at)}
            for a in announcements
        ],
        "weeklySchedule": [s.to_dict() for s in
                           schedules_between(monday, sunday, audiences_for_student(student.semester))],
        "progress": {
            "assignments": _percent(len(submitted_ids & {a.id for a in assignments}), len(assignments)),
            "quizzes": _percent(quizzes_done, quizzes_total),
        },
    })


@app.get("/api/dashboard/teacher-stats")
@require_user("teacher")
def dashboard_teacher():
    teacher_id = g.user["user_id"]
    now = datetime.now()
    mine = Assignment.created_by_teacher_id == teacher_id
    subs = AssignmentSubmission.query.join(Assignment).filter(mine)
    recent = subs.order_by(AssignmentSubmission.submitted_at.desc()).limit(5).all()
    graded = subs.filter(AssignmentSubmission.status == "graded").all()
    week_ago = now - timedelta(days=7)
    active_students = (db.session.query(func.count(func.distinct(AssignmentSubmission.student_id)))
                       .select_from(AssignmentSubmission).join(Assignment)
                       .filter(mine, AssignmentSubmission.submitted_at >= week_ago)
                       .scalar()) or 0
    monday, sunday = _week_bounds(now.date())
    return ok({
        "materialsCount": Material.query.filter_by(uploaded_by_role="teacher", uploaded_by_id=teacher_id).count(),
        "activeAssignments": Assignment.query.filter(mine, Assignment.due_date >= now).count(),
        "quizzesCreated": Quiz.query.filter_by(created_by_teacher_id=teacher_id).count(),
        "pendingGrading": subs.filter(AssignmentSubmission.status == "submitted").count(),
        "recentSubmissions": [
            {"id": s.id, "submittedAt": _iso(s.submitted_at), "marks": s.marks_obtained,
             "studentName": s.student.name, "assignmentTitle": s.assignment.title}
            for s in recent
        ],
        "classPerformance": {
            "average": _mean([_submission_pct(s) for s in graded], 0),
            "submissionRate": _percent(active_students, Student.query.count()),
        },
        "weeklySchedule": [s.to_dict() for s in
                           schedules_between(monday, sunday, audiences_for_teacher())],
    })

# --------------------------------------------------------------------
# Profile
# --------------------------------------------------------------------
PHOTO_DATA_URL = re.compile(r"^data:image/(png|jpe?g|gif|webp);base64,(.+)$", re.S)


def save_profile_photo(acct, data_url):
    match = PHOTO_DATA_URL.match(data_url)
    if not match:
        raise ApiError("profilePhoto must be a base64 image data URL", 422, {"profilePhoto": "invalid"})
    ext = "jpg" if match.group(1) == "jpeg" else match.group(1)
    try:
        raw = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        raise ApiError("profilePhoto is not valid base64", 422, {"profilePhoto": "invalid"})
    folder = os.path.join(current_app.config["UPLOAD_DIR"], "profiles")
    os.makedirs(folder, exist_ok=True)
    name = f"{acct.role}_{acct.id}_{int(datetime.now().timestamp())}.{ext}"
    with open(os.path.join(folder, name), "wb") as fh:
        fh.write(raw)
    return f"/uploads/profiles/{name}"


@app.put("/api/profile/update")
@require_user()
def profile_update():
    acct = current_account()
    data = _json()
    require_fields(data, "fullName", "email")
    email = str(data["email"]).strip().lower()
    model = type(acct)
    if model.query.filter(func.lower(model.email) == email, model.id != acct.id).first():
        raise ApiError("Email already exists", 409, {"email": "taken"})
    acct.name = str(data["fullName"]).strip()
    acct.email = email
    photo = data.get("profilePhoto")
    if isinstance(photo, str) and photo.startswith("data:"):
        old = acct.profile_photo
        acct.profile_photo = save_profile_photo(acct, photo)
        if old:
            remove_upload(old)
    db.session.commit()
    return ok({"id": acct.id, "name": acct.name, "email": acct.email,
               "profile_photo": acct.profile_photo, "role": acct.role},
              "Profile updated successfully")


@app.put("/api/profile/change-password")
@app.put("/api/auth/password")
@require_user()
def profile_change_password():
    acct = current_account()
    data = _json()
    require_fields(data, "currentPassword", "newPassword")
    if not acct.check_password(str(data["currentPassword"])):
        raise ApiError("Incorrect current password", 400)
    if len(str(data["newPassword"])) < 6:
        raise ApiError("New password must be at least 6 characters", 422, {"newPassword": "too short"})
    acct.set_password(str(data["newPassword"]))
    db.session.commit()
    log.info("Password changed for %s #%d", acct.role, acct.id)
    return ok(None, "Password changed successfully")

# --------------------------------------------------------------------
# Dev entry
# --------------------------------------------------------------------
def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5000)
    args = parser.parse_args()
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.run(host=args.host, port=args.port)

if __name__ == "__main__":
    main()
