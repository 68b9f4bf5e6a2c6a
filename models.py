# models.py

from extensions import db
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime

# Many-to-many between courses and the lecturers responsible for them.
# A lecturer owns a course exactly when a row links them here.
course_lecturers = db.Table(
    'course_lecturers',
    db.Column('course_id', db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), primary_key=True),
    db.Column('lecturer_id', db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), primary_key=True),
)


class Enrollment(db.Model):
    __tablename__ = 'enrollments'
    # The composite primary key keeps one row per (student, course)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), primary_key=True)
    enrolled_at = db.Column(db.DateTime, index=True, default=datetime.utcnow)

    student = db.relationship('User', backref=db.backref('enrollments', lazy=True, cascade='all, delete'))
    course = db.relationship('Course', backref=db.backref('enrollments', lazy=True, cascade='all, delete'))

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'course_id': self.course_id,
            'enrolled_at': self.enrolled_at.isoformat() if self.enrolled_at else None,
        }


class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(20), default='student', nullable=False) # 'student', 'lecturer' or 'admin'
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'role': self.role,
        }

    def __repr__(self):
        return f'<User {self.username}>'


class Course(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, nullable=False)
    title = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    semester = db.Column(db.String(32), nullable=True)
    year = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    lecturers = db.relationship('User', secondary=course_lecturers, lazy='subquery',
                                backref=db.backref('teaching_courses', lazy=True))

    # The `assignments` and `resources` backrefs are defined on the related models

    def to_dict(self, with_lecturers=True):
        data = {
            'id': self.id,
            'code': self.code,
            'title': self.title,
            'description': self.description,
            'semester': self.semester,
            'year': self.year,
        }
        if with_lecturers:
            data['lecturers'] = [{'id': l.id, 'username': l.username, 'email': l.email} for l in self.lecturers]
        return data

    def __repr__(self):
        return f'<Course {self.code}>'


class Assignment(db.Model):
    __table_args__ = (
        db.CheckConstraint('max_points >= 0', name='ck_assignment_max_points_non_negative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime, nullable=False)
    max_points = db.Column(db.Integer, nullable=False, default=100)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    course = db.relationship('Course', backref=db.backref('assignments', lazy=True, cascade='all, delete'))
    submissions = db.relationship('Submission', backref='assignment', lazy=True, cascade='all, delete')

    def to_dict(self):
        return {
            'id': self.id,
            'course_id': self.course_id,
            'title': self.title,
            'description': self.description,
            'due_date': self.due_date.isoformat(),
            'max_points': self.max_points,
        }

    def __repr__(self):
        return f"Assignment('{self.title}', 'Due: {self.due_date}')"


class Submission(db.Model):
    __table_args__ = (
        db.UniqueConstraint('assignment_id', 'student_id', name='uq_submission_assignment_student'),
    )

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(db.Integer, db.ForeignKey('assignment.id', ondelete='CASCADE'), nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    submission_text = db.Column(db.Text, nullable=True)
    file_path = db.Column(db.String(300), nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    grade = db.Column(db.Float, nullable=True) # NULL until graded
    feedback = db.Column(db.Text, nullable=True)
    graded_at = db.Column(db.DateTime, nullable=True)

    student = db.relationship('User', backref=db.backref('submissions', lazy=True, cascade='all, delete'))

    def to_dict(self, with_student=False):
        data = {
            'id': self.id,
            'assignment_id': self.assignment_id,
            'student_id': self.student_id,
            'submission_text': self.submission_text,
            'file_path': self.file_path,
            'submitted_at': self.submitted_at.isoformat() if self.submitted_at else None,
            'grade': self.grade,
            'feedback': self.feedback,
            'graded_at': self.graded_at.isoformat() if self.graded_at else None,
        }
        if with_student:
            data['student'] = {'id': self.student.id, 'username': self.student.username, 'email': self.student.email}
        return data

    def __repr__(self):
        return f"Submission('{self.student_id}', '{self.assignment_id}', '{self.grade}')"


class Resource(db.Model):
    __tablename__ = 'resources'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    file_path = db.Column(db.String(300), nullable=False)
    type = db.Column(db.String(50), nullable=False, default='document')
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='CASCADE'), nullable=False)
    uploaded_at = db.Column(db.DateTime, default=datetime.utcnow)

    course = db.relationship('Course', backref=db.backref('resources', lazy=True, cascade='all, delete'))

    def to_dict(self):
        return {
            'id': self.id,
            'course_id': self.course_id,
            'title': self.title,
            'file_path': self.file_path,
            'type': self.type,
            'uploaded_at': self.uploaded_at.isoformat() if self.uploaded_at else None,
        }


class Announcement(db.Model):
    __tablename__ = 'announcements'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Foreign key to link to the admin who posted it
    author_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True)
    author = db.relationship('User', backref=db.backref('announcements', lazy=True))

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'author_id': self.author_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<Announcement {self.title}>'


class Message(db.Model):
    __tablename__ = 'messages'
    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(10), nullable=False, default='SENT') # 'SENT' or 'READ'
    created_at = db.Column(db.DateTime, index=True, default=datetime.utcnow)

    sender_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    recipient_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='CASCADE'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.id', ondelete='SET NULL'), nullable=True)

    sender = db.relationship('User', foreign_keys=[sender_id], backref=db.backref('sent_messages', lazy=True, cascade='all, delete'))
    recipient = db.relationship('User', foreign_keys=[recipient_id], backref=db.backref('received_messages', lazy=True, cascade='all, delete'))

    def to_dict(self):
        return {
            'id': self.id,
            'content': self.content,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'sender_id': self.sender_id,
            'sender_name': self.sender.username,
            'recipient_id': self.recipient_id,
            'recipient_name': self.recipient.username,
            'course_id': self.course_id,
        }

    def __repr__(self):
        return f'<Message {self.sender_id}->{self.recipient_id}>'
