# services.py
"""
State changes performed after the authorization gate has allowed a request.

These functions validate input, write through the shared SQLAlchemy session
and commit once. They raise ValidationError (400) or ConflictError (409);
authorization is never re-checked here.
"""
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from authorization import Role
from extensions import db
from models import User, Course, Enrollment, Assignment, Submission, Resource, Announcement, Message

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_TITLE_LENGTH = 255
DEFAULT_RESOURCE_TYPE = 'document'


class ValidationError(Exception):
    """Input that can never be stored, independent of who sends it."""


class ConflictError(Exception):
    """The write would collide with existing data."""


def parse_due_date(value):
    """
    Parse an ISO-8601 date-time into a naive UTC datetime.

    Accepts the HTML ``datetime-local`` form (``2025-05-01T23:59``) as well
    as full ISO strings with a ``Z`` or numeric offset.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not value or not isinstance(value, str):
            raise ValidationError('A due date is required.')
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f'Invalid due date: {value!r}. Use ISO format, e.g. 2025-05-01T23:59.')
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_max_points(value):
    if value is None or isinstance(value, bool):
        raise ValidationError('max_points is required.')
    try:
        points = int(value)
    except (TypeError, ValueError):
        raise ValidationError('max_points must be an integer.')
    if points != value and not isinstance(value, str):
        raise ValidationError('max_points must be an integer.')
    if points < 0:
        raise ValidationError('max_points cannot be negative.')
    return points


def _require(value, message):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)
    return value.strip() if isinstance(value, str) else value


def _commit_or_conflict(message):
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(message)


# --- Courses ---

def _load_lecturers(lecturer_ids):
    lecturer_ids = set(lecturer_ids or [])
    if not lecturer_ids:
        return []
    lecturers = User.query.filter(User.id.in_(lecturer_ids)).all()
    found = {u.id for u in lecturers if u.role == Role.LECTURER.value}
    missing = lecturer_ids - found
    if missing:
        raise ValidationError(f'Not lecturers: {sorted(missing)}.')
    return lecturers


def create_course(creator, code, title, description=None, semester=None, year=None, lecturer_ids=None):
    """Create a course. A lecturer creating a course always becomes one of its lecturers."""
    code = _require(code, 'Course code is required.')
    title = _require(title, 'Course title is required.')

    lecturer_ids = set(lecturer_ids or [])
    if creator.role == Role.LECTURER:
        lecturer_ids.add(creator.user_id)
    if not lecturer_ids:
        raise ValidationError('A course needs at least one lecturer.')
    lecturers = _load_lecturers(lecturer_ids)

    course = Course(code=code, title=title, description=description,
                    semester=semester, year=year, lecturers=lecturers)
    db.session.add(course)
    _commit_or_conflict('Course with this code already exists.')
    logger.info(f"Course {course.code} created by user {creator.user_id}")
    return course


def set_course_lecturers(course, lecturer_ids):
    lecturers = _load_lecturers(lecturer_ids)
    if not lecturers:
        raise ValidationError('A course needs at least one lecturer.')
    course.lecturers = lecturers
    db.session.commit()
    logger.info(f"Lecturers of course {course.code} set to {sorted(u.id for u in lecturers)}")
    return course


def update_course(course, title, semester, year, description=None, code=None, lecturer_ids=None):
    """Admin edit of a course. ``lecturer_ids`` replaces the lecturer set when given."""
    if lecturer_ids is not None:
        lecturers = _load_lecturers(lecturer_ids)
        if not lecturers:
            raise ValidationError('A course needs at least one lecturer.')
        course.lecturers = lecturers
    course.title = _require(title, 'Course title cannot be empty.')
    course.semester = _require(semester, 'Semester cannot be empty.')
    course.year = year
    if description is not None:
        course.description = description
    if code is not None:
        course.code = _require(code, 'Course code cannot be empty.')
    _commit_or_conflict('Course with this code already exists.')
    logger.info(f"Course {course.code} updated")
    return course


def delete_course(course):
    """Delete a course with its assignments, resources and enrollments."""
    Message.query.filter_by(course_id=course.id).update({Message.course_id: None})
    db.session.delete(course)
    db.session.commit()
    logger.info(f"Course {course.code} deleted")


# --- Resources ---

def add_resource(course_id, title, file_path, type=None):
    title = _require(title, 'Resource title is required.')
    file_path = _require(file_path, 'Resource file path is required.')
    resource = Resource(course_id=course_id, title=title, file_path=file_path,
                        type=type or DEFAULT_RESOURCE_TYPE)
    db.session.add(resource)
    db.session.commit()
    return resource


def update_resource(resource, **fields):
    """Apply a partial update; only keys present in ``fields`` change."""
    if 'title' in fields:
        resource.title = _require(fields['title'], 'Resource title cannot be empty.')
    if 'file_path' in fields:
        resource.file_path = _require(fields['file_path'], 'Resource file path cannot be empty.')
    if 'type' in fields:
        resource.type = _require(fields['type'], 'Resource type cannot be empty.')
    db.session.commit()
    logger.info(f"Resource {resource.id} updated in course {resource.course_id}")
    return resource


def delete_resource(resource):
    db.session.delete(resource)
    db.session.commit()
    logger.info(f"Resource {resource.id} deleted from course {resource.course_id}")


# --- Enrollment ---

def enroll_student(student_id, course_id):
    if Enrollment.query.filter_by(student_id=student_id, course_id=course_id).first():
        raise ConflictError('You are already enrolled in this course.')
    enrollment = Enrollment(student_id=student_id, course_id=course_id)
    db.session.add(enrollment)
    # A concurrent enrollment for the same pair loses on the primary key
    _commit_or_conflict('You are already enrolled in this course.')
    logger.info(f"Student {student_id} enrolled in course {course_id}")
    return enrollment


# --- Assignments ---

def create_assignment(course_id, title, due_date, max_points, description=None):
    assignment = Assignment(
        course_id=course_id,
        title=_require(title, 'Assignment title is required.'),
        description=description,
        due_date=parse_due_date(due_date),
        max_points=validate_max_points(max_points),
    )
    db.session.add(assignment)
    db.session.commit()
    logger.info(f"Assignment {assignment.id} created in course {course_id}")
    return assignment


def update_assignment(assignment, **fields):
    """Apply a partial update; only keys present in ``fields`` change."""
    if 'title' in fields:
        assignment.title = _require(fields['title'], 'Assignment title cannot be empty.')
    if 'description' in fields:
        assignment.description = fields['description']
    if 'due_date' in fields:
        assignment.due_date = parse_due_date(fields['due_date'])
    if 'max_points' in fields:
        max_points = validate_max_points(fields['max_points'])
        highest = db.session.query(db.func.max(Submission.grade)).filter(
            Submission.assignment_id == assignment.id).scalar()
        if highest is not None and highest > max_points:
            raise ValidationError(f'max_points cannot be lower than an existing grade ({highest:g}).')
        assignment.max_points = max_points
    db.session.commit()
    return assignment


def delete_assignment(assignment):
    db.session.delete(assignment)
    db.session.commit()
    logger.info(f"Assignment {assignment.id} deleted with its submissions")


# --- Submissions ---

def _resubmit(submission, submission_text, file_path, now):
    submission.submission_text = submission_text
    submission.file_path = file_path
    submission.submitted_at = now
    # A resubmission supersedes any grading of the previous attempt
    submission.grade = None
    submission.feedback = None
    submission.graded_at = None


def _find_submission(assignment_id, student_id):
    return Submission.query.filter_by(assignment_id=assignment_id, student_id=student_id).first()


def submit_assignment(assignment_id, student_id, submission_text=None, file_path=None, now=None):
    """
    Create the student's submission or replace the existing one.

    Returns (submission, created). Two concurrent first submissions both pass
    authorization; the loser of the unique-constraint race is retried as an
    update of the winner's row.
    """
    if not submission_text and not file_path:
        raise ValidationError('Submission must contain either text or a file.')
    now = now or datetime.utcnow()

    submission = _find_submission(assignment_id, student_id)
    if submission is None:
        submission = Submission(assignment_id=assignment_id, student_id=student_id,
                                submission_text=submission_text, file_path=file_path, submitted_at=now)
        db.session.add(submission)
        try:
            db.session.commit()
            logger.info(f"Student {student_id} submitted assignment {assignment_id}")
            return submission, True
        except IntegrityError:
            db.session.rollback()
            submission = _find_submission(assignment_id, student_id)
            if submission is None:
                raise ConflictError('Submission could not be saved, please retry.')

    _resubmit(submission, submission_text, file_path, now)
    db.session.commit()
    logger.info(f"Student {student_id} resubmitted assignment {assignment_id}")
    return submission, False


def grade_submission(submission, grade, feedback=None, now=None):
    """Store a grade in [0, max_points] with optional feedback."""
    if grade is None or isinstance(grade, bool):
        raise ValidationError('Grade is required.')
    try:
        grade = float(grade)
    except (TypeError, ValueError):
        raise ValidationError('Grade must be a number.')
    max_points = submission.assignment.max_points
    if not 0 <= grade <= max_points:
        raise ValidationError(f'Grade must be between 0 and {max_points}.')
    if feedback is not None and not isinstance(feedback, str):
        raise ValidationError('Feedback must be a string.')

    submission.grade = grade
    submission.feedback = feedback
    submission.graded_at = now or datetime.utcnow()
    db.session.commit()
    logger.info(f"Submission {submission.id} graded {grade:g}/{max_points}")
    return submission


# --- Users ---

def _validate_role(role):
    parsed = Role.from_string(role)
    if parsed is None:
        raise ValidationError(f"Invalid role {role!r}. Choose one of: {', '.join(Role.get_all())}.")
    return parsed


def create_user(username, email, password, role=Role.STUDENT.value):
    username = _require(username, 'Username is required.')
    email = _require(email, 'Email is required.')
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')
    role = _validate_role(role)

    if User.query.filter((User.username == username) | (User.email == email)).first():
        raise ConflictError('User with this username or email already exists.')
    user = User(username=username, email=email, role=role.value)
    user.set_password(password)
    db.session.add(user)
    _commit_or_conflict('User with this username or email already exists.')
    logger.info(f"User {user.username} created with role {user.role}")
    return user


def _sole_lecturer_courses(user):
    return [c for c in user.teaching_courses if len(c.lecturers) == 1]


def update_user(user, acting_user_id, username=None, email=None, role=None, password=None):
    """Edit a user. Only administrators reach this, and not to demote themselves."""
    if role is not None:
        new_role = _validate_role(role)
        if user.id == acting_user_id and new_role != Role.ADMIN:
            raise ConflictError('Cannot remove your own admin role.')
        if user.role == Role.LECTURER.value and new_role != Role.LECTURER and _sole_lecturer_courses(user):
            raise ConflictError('User is the only lecturer of one or more courses.')
        if new_role != Role.LECTURER:
            user.teaching_courses = []
        user.role = new_role.value
    if username is not None:
        user.username = _require(username, 'Username cannot be empty.')
    if email is not None:
        user.email = _require(email, 'Email cannot be empty.')
    if password is not None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')
        user.set_password(password)
    _commit_or_conflict('Username or email already in use.')
    logger.info(f"User {user.id} updated by admin {acting_user_id}")
    return user


def delete_user(user, acting_user_id):
    if user.id == acting_user_id:
        raise ConflictError('Cannot delete the currently logged-in admin user.')
    if _sole_lecturer_courses(user):
        raise ConflictError('Cannot delete user: they are the only lecturer of one or more courses.')
    db.session.delete(user)
    db.session.commit()
    logger.info(f"User {user.id} deleted by admin {acting_user_id}")


def update_profile(user, username=None, email=None, old_password=None, new_password=None):
    """A user editing their own account. Changing the password needs the current one."""
    if new_password is not None:
        if not old_password or not user.check_password(old_password):
            raise ValidationError('Incorrect old password.')
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')
        user.set_password(new_password)
    if username is not None:
        user.username = _require(username, 'Username cannot be empty.')
    if email is not None:
        user.email = _require(email, 'Email cannot be empty.')
    _commit_or_conflict('Username or email already in use.')
    logger.info(f"User {user.id} updated their profile")
    return user


# --- Announcements and messages ---

def post_announcement(author_id, title, content):
    title = _require(title, 'Title and content are required for the announcement.')
    content = _require(content, 'Title and content are required for the announcement.')
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f'Title cannot exceed {MAX_TITLE_LENGTH} characters.')
    announcement = Announcement(title=title, content=content, author_id=author_id)
    db.session.add(announcement)
    db.session.commit()
    return announcement


def send_message(sender_id, recipient_id, content, course_id=None):
    content = _require(content, 'Message content is required.')
    message = Message(sender_id=sender_id, recipient_id=recipient_id, content=content, course_id=course_id)
    db.session.add(message)
    db.session.commit()
    return message
