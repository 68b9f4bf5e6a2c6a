# repository.py
"""
Fact lookups used by the authorization gate, backed by the SQLAlchemy session.

Each method returns the fact or None when the row does not exist. Driver and
connection failures are re-raised as ``StoreUnavailable`` so callers never
mistake "could not check" for "not found".
"""
import logging
from functools import wraps

from sqlalchemy.exc import DBAPIError

from authorization import StoreUnavailable
from models import User, Course, Enrollment, Assignment, Submission, Resource, course_lecturers

logger = logging.getLogger(__name__)


def _store_call(f):
    @wraps(f)
    def wrapper(self, *args, **kwargs):
        try:
            return f(self, *args, **kwargs)
        except DBAPIError as e:
            logger.error(f"Store lookup {f.__name__}{args} failed: {str(e)}")
            self.session.rollback()
            raise StoreUnavailable(str(e)) from e
    return wrapper


class SqlAlchemyStore:
    """Read-only view over the database for authorization decisions."""

    def __init__(self, session):
        self.session = session

    @_store_call
    def get_user_role(self, user_id):
        return self.session.query(User.role).filter_by(id=user_id).scalar()

    @_store_call
    def get_course_lecturers(self, course_id):
        if self.session.query(Course.id).filter_by(id=course_id).scalar() is None:
            return None
        rows = self.session.query(course_lecturers.c.lecturer_id).filter(
            course_lecturers.c.course_id == course_id).all()
        return frozenset(row[0] for row in rows)

    @_store_call
    def is_enrolled(self, student_id, course_id):
        enrollment = self.session.query(Enrollment.student_id).filter_by(
            student_id=student_id, course_id=course_id).first()
        return enrollment is not None

    @_store_call
    def get_assignment_course(self, assignment_id):
        return self.session.query(Assignment.course_id).filter_by(id=assignment_id).scalar()

    @_store_call
    def get_assignment_due_date(self, assignment_id):
        return self.session.query(Assignment.due_date).filter_by(id=assignment_id).scalar()

    @_store_call
    def get_submission_owner(self, submission_id):
        return self.session.query(Submission.student_id).filter_by(id=submission_id).scalar()

    @_store_call
    def get_submission_assignment(self, submission_id):
        return self.session.query(Submission.assignment_id).filter_by(id=submission_id).scalar()

    @_store_call
    def get_resource_course(self, resource_id):
        return self.session.query(Resource.course_id).filter_by(id=resource_id).scalar()
