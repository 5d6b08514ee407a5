
import json
from datetime import datetime
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.types import TypeDecorator, TEXT
from sqlalchemy import UniqueConstraint
from werkzeug.security import generate_password_hash, check_password_hash


db = SQLAlchemy()

ROLES = ("admin", "teacher", "student")


def _iso(dt):
    return dt.isoformat(sep=" ", timespec="seconds") if dt else None


class JSONText(TypeDecorator):
    impl = TEXT
    cache_ok = True
    def process_bind_param(self, value, dialect):
        if value is None: return None
        return json.dumps(value, ensure_ascii=False)
    def process_result_value(self, value, dialect):
        if value is None: return None
        return json.loads(value)


# --------------------------------------------------------------------
# Accounts (one table per role)
# --------------------------------------------------------------------
class AccountMixin:
    """Columns and helpers shared by admins, teachers and students."""
    role = None

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=True)
    dob = db.Column(db.Date, nullable=True)
    gender = db.Column(db.String(16), nullable=True)
    address = db.Column(db.Text, nullable=True)
    profile_photo = db.Column(db.String(512), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    def set_password(self, pw): self.password_hash = generate_password_hash(pw)
    def check_password(self, pw): return bool(self.password_hash) and check_password_hash(self.password_hash, pw)

    def to_dict(self):
        # password_hash never leaves the server
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "dob": self.dob.isoformat() if self.dob else None,
            "gender": self.gender,
            "address": self.address,
            "profile_photo": self.profile_photo,
            "created_at": _iso(self.created_at),
            "role": self.role,
        }


class Admin(AccountMixin, db.Model):
    __tablename__ = 'admins'
    role = "admin"


class Teacher(AccountMixin, db.Model):
    __tablename__ = 'teachers'
    role = "teacher"
    subject_specialization = db.Column(db.String(120), nullable=True)
    qualification = db.Column(db.String(120), nullable=True)
    experience_years = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        d = super().to_dict()
        d.update(
            subject_specialization=self.subject_specialization,
            qualification=self.qualification,
            experience_years=self.experience_years,
        )
        return d


class Student(AccountMixin, db.Model):
    __tablename__ = 'students'
    role = "student"
    enrollment_no = db.Column(db.String(64), unique=True, nullable=True)
    semester = db.Column(db.Integer, nullable=False, default=1)
    department = db.Column(db.String(120), nullable=True)

    def to_dict(self):
        d = super().to_dict()
        d.update(enrollment_no=self.enrollment_no, semester=self.semester, department=self.department)
        return d


ACCOUNT_MODELS = {"admin": Admin, "teacher": Teacher, "student": Student}


# --------------------------------------------------------------------
# Announcements
# --------------------------------------------------------------------
class Announcement(db.Model):
    __tablename__ = 'announcements'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_by_role = db.Column(db.String(16), nullable=False)
    created_by_id = db.Column(db.Integer, nullable=False, index=True)
    target_audience = db.Column(db.String(16), nullable=False, default="all")  # all, student, teacher
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    def to_dict(self, creator_name=None):
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "created_by_role": self.created_by_role,
            "created_by_id": self.created_by_id,
            "target_audience": self.target_audience,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "creator_name": creator_name,
        }


# --------------------------------------------------------------------
# Assignments
# --------------------------------------------------------------------
class Assignment(db.Model):
    __tablename__ = 'assignments'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime, nullable=False)
    total_marks = db.Column(db.Integer, nullable=False, default=100)
    semester = db.Column(db.Integer, nullable=True, index=True)
    attachment_path = db.Column(db.String(512), nullable=True)
    created_by_teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id', ondelete="CASCADE"), index=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    teacher = db.relationship('Teacher', backref=db.backref('assignments', cascade="all,delete-orphan"))

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "total_marks": self.total_marks,
            "semester": self.semester,
            "attachment_path": self.attachment_path,
            "created_by_teacher_id": self.created_by_teacher_id,
            "teacher_name": self.teacher.name if self.teacher else None,
            "created_at": _iso(self.created_at),
        }


class AssignmentSubmission(db.Model):
    __tablename__ = 'assignment_submissions'
    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey('assignments.id', ondelete="CASCADE"), index=True, nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete="CASCADE"), index=True, nullable=False)
    submission_text = db.Column(db.Text, nullable=True)
    file_url = db.Column(db.String(512), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="submitted")  # submitted, graded
    marks_obtained = db.Column(db.Float, nullable=True)
    feedback = db.Column(db.Text, nullable=True)
    submitted_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    graded_at = db.Column(db.DateTime, nullable=True)

    assignment = db.relationship('Assignment', backref=db.backref('submissions', cascade="all,delete-orphan"))
    student = db.relationship('Student', backref=db.backref('submissions', cascade="all,delete-orphan"))

    __table_args__ = (
        UniqueConstraint('assignment_id', 'student_id', name='uq_submission_assignment_student'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "student_id": self.student_id,
            "submission_text": self.submission_text,
            "file_url": self.file_url,
            "status": self.status,
            "marks_obtained": self.marks_obtained,
            "feedback": self.feedback,
            "submitted_at": _iso(self.submitted_at),
            "graded_at": _iso(self.graded_at),
        }


# --------------------------------------------------------------------
# Quizzes
# --------------------------------------------------------------------
class Quiz(db.Model):
    __tablename__ = 'quizzes'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=False)
    total_marks = db.Column(db.Integer, nullable=False)
    semester = db.Column(db.Integer, nullable=False, default=1, index=True)
    created_by_teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id', ondelete="CASCADE"), index=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    teacher = db.relationship('Teacher', backref=db.backref('quizzes', cascade="all,delete-orphan"))

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "total_marks": self.total_marks,
            "semester": self.semester,
            "created_by_teacher_id": self.created_by_teacher_id,
            "teacher_name": self.teacher.name if self.teacher else None,
            "created_at": _iso(self.created_at),
        }


class QuizQuestion(db.Model):
    __tablename__ = 'quiz_questions'
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quizzes.id', ondelete="CASCADE"), index=True, nullable=False)
    question_text = db.Column(db.Text, nullable=False)
    options = db.Column(JSONText, nullable=False)      # list of option strings
    correct_answer = db.Column(db.Integer, nullable=False)  # index into options
    marks = db.Column(db.Integer, nullable=False, default=1)
    question_type = db.Column(db.String(32), nullable=False, default="multiple_choice")

    quiz = db.relationship('Quiz', backref=db.backref('questions', cascade="all,delete-orphan", order_by="QuizQuestion.id"))

    def to_dict(self, reveal=True):
        d = {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "question": self.question_text,
            "options": self.options or [],
            "marks": self.marks,
        }
        if reveal:
            d["correctAnswer"] = self.correct_answer
        return d


class QuizAttempt(db.Model):
    __tablename__ = 'quiz_attempts'
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quizzes.id', ondelete="CASCADE"), index=True, nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete="CASCADE"), index=True, nullable=False)
    score = db.Column(db.Float, nullable=False, default=0)
    total_marks = db.Column(db.Integer, nullable=False)
    answers = db.Column(JSONText, nullable=True)
    submitted_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    quiz = db.relationship('Quiz', backref=db.backref('attempts', cascade="all,delete-orphan"))
    student = db.relationship('Student', backref=db.backref('quiz_attempts', cascade="all,delete-orphan"))

    __table_args__ = (
        UniqueConstraint('quiz_id', 'student_id', name='uq_attempt_quiz_student'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "quiz_id": self.quiz_id,
            "student_id": self.student_id,
            "score": self.score,
            "total_marks": self.total_marks,
            "answers": self.answers,
            "submitted_at": _iso(self.submitted_at),
        }


# --------------------------------------------------------------------
# Materials, schedules, feedback
# --------------------------------------------------------------------
class Material(db.Model):
    __tablename__ = 'materials'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    file_path = db.Column(db.String(512), nullable=True)   # on-disk location
    file_url = db.Column(db.String(512), nullable=True)    # public /uploads/... path
    file_type = db.Column(db.String(16), nullable=False, default="pdf")
    uploaded_by_role = db.Column(db.String(16), nullable=False)
    uploaded_by_id = db.Column(db.Integer, nullable=False, index=True)
    semester = db.Column(db.Integer, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    def to_dict(self, uploader_name=None):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "file_url": self.file_url,
            "file_type": self.file_type,
            "uploaded_by_role": self.uploaded_by_role,
            "uploaded_by_id": self.uploaded_by_id,
            "semester": self.semester,
            "teacher_name": uploader_name,
            "created_at": _iso(self.created_at),
        }


class Schedule(db.Model):
    __tablename__ = 'schedules'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    schedule_date = db.Column(db.Date, nullable=False, index=True)
    schedule_time = db.Column(db.String(8), nullable=False)  # HH:MM
    location = db.Column(db.String(255), nullable=True)
    type = db.Column(db.String(32), nullable=False, default="class")
    target_audience = db.Column(db.String(32), nullable=False, default="Everyone")
    created_by_admin_id = db.Column(db.Integer, db.ForeignKey('admins.id', ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "schedule_date": self.schedule_date.isoformat(),
            "schedule_time": self.schedule_time,
            "location": self.location,
            "type": self.type,
            "target_audience": self.target_audience,
            "created_by_admin_id": self.created_by_admin_id,
            "created_at": _iso(self.created_at),
        }


class Feedback(db.Model):
    __tablename__ = 'feedback'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete="CASCADE"), index=True, nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    response = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, reviewed
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    responded_at = db.Column(db.DateTime, nullable=True)

    student = db.relationship('Student', backref=db.backref('feedback_items', cascade="all,delete-orphan"))

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "student_name": self.student.name if self.student else None,
            "subject": self.subject,
            "message": self.message,
            "response": self.response,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "responded_at": _iso(self.responded_at),
        }


# --------------------------------------------------------------------
# Startup ideas
# --------------------------------------------------------------------
class Startup(db.Model):
    __tablename__ = 'startups'
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('students.id', ondelete="CASCADE"), index=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=False)
    brief_description = db.Column(db.Text, nullable=True)
    problem_statement = db.Column(db.Text, nullable=True)
    solution_overview = db.Column(db.Text, nullable=True)
    team_size = db.Column(db.Integer, nullable=True)
    target_market = db.Column(db.Text, nullable=True)
    business_model = db.Column(db.Text, nullable=True)
    funding_required = db.Column(db.String(64), nullable=True)
    current_stage = db.Column(db.String(64), nullable=True)
    tags = db.Column(JSONText, nullable=True)
    attachments = db.Column(JSONText, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="pending")  # pending, approved, rejected
    admin_remarks = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    reviewed_at = db.Column(db.DateTime, nullable=True)

    student = db.relationship('Student', backref=db.backref('startups', cascade="all,delete-orphan"))

    def to_dict(self):
        # camelCase keys, as the SPA reads them
        return {
            "id": self.id,
            "studentId": self.student_id,
            "studentName": self.student.name if self.student else None,
            "title": self.title,
            "category": self.category,
            "briefDescription": self.brief_description,
            "problemStatement": self.problem_statement,
            "solutionOverview": self.solution_overview,
            "teamSize": self.team_size,
            "targetMarket": self.target_market,
            "businessModel": self.business_model,
            "fundingRequired": self.funding_required,
            "currentStage": self.current_stage,
            "tags": self.tags or [],
            "attachments": self.attachments or [],
            "status": self.status,
            "adminRemarks": self.admin_remarks,
            "createdAt": _iso(self.created_at),
            "reviewedAt": _iso(self.reviewed_at),
        }


# --------------------------------------------------------------------
# Notifications
# --------------------------------------------------------------------
class Notification(db.Model):
    __tablename__ = 'notifications'
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False)
    user_role = db.Column(db.String(16), nullable=False)
    type = db.Column(db.String(32), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=True)
    link = db.Column(db.String(255), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)

    __table_args__ = (
        db.Index('ix_notifications_owner', 'user_role', 'user_id'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "is_read": self.is_read,
            "created_at": _iso(self.created_at),
        }


# --------------------------------------------------------------------
# Syllabus tracking
# --------------------------------------------------------------------
class SyllabusTopic(db.Model):
    __tablename__ = 'syllabus_topics'
    id = db.Column(db.Integer, primary_key=True)
    teacher_id = db.Column(db.Integer, db.ForeignKey('teachers.id', ondelete="CASCADE"), index=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    weeks = db.Column(db.String(64), nullable=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.now, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    teacher = db.relationship('Teacher', backref=db.backref('topics', cascade="all,delete-orphan"))

    def to_dict(self):
        return {
            "id": self.id,
            "teacher_id": self.teacher_id,
            "title": self.title,
            "description": self.description,
            "weeks": self.weeks,
            "completed": self.completed,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class SyllabusSubtopic(db.Model):
    __tablename__ = 'syllabus_subtopics'
    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('syllabus_topics.id', ondelete="CASCADE"), index=True, nullable=False)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)

    parent = db.relationship('SyllabusTopic', backref=db.backref('subtopics', cascade="all,delete-orphan", order_by="SyllabusSubtopic.id"))

    def to_dict(self):
        return {
            "id": self.id,
            "parentId": self.parent_id,
            "title": self.title,
            "description": self.description,
            "completed": self.completed,
        }
