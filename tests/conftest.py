import pytest
from datetime import datetime, timedelta

from app import create_app, dispose_store
from extensions import db
from models import User, Course, Assignment, Enrollment, Submission, Resource
from authorization import StoreUnavailable

PASSWORD = 'password123'
DUE = datetime(2025, 5, 1, 23, 59)


@pytest.fixture
def app():
    app = create_app('instance.config.TestingConfig')
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
    dispose_store(app)


@pytest.fixture
def client(app):
    return app.test_client()


class Factory:
    """Creates rows in their own app context and hands back ids."""

    def __init__(self, app):
        self.app = app

    def user(self, username, role='student', password=PASSWORD):
        with self.app.app_context():
            user = User(username=username, email=f'{username}@example.com', role=role)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id

    def course(self, code, lecturer_ids, title=None):
        with self.app.app_context():
            lecturers = User.query.filter(User.id.in_(lecturer_ids)).all()
            course = Course(code=code, title=title or f'Course {code}', lecturers=lecturers)
            db.session.add(course)
            db.session.commit()
            return course.id

    def assignment(self, course_id, due_date=None, max_points=100, title='Essay'):
        if due_date is None:
            due_date = datetime.utcnow() + timedelta(days=7)
        with self.app.app_context():
            assignment = Assignment(course_id=course_id, title=title, due_date=due_date, max_points=max_points)
            db.session.add(assignment)
            db.session.commit()
            return assignment.id

    def resource(self, course_id, title='Slides', file_path='https://files.example.com/slides.pdf'):
        with self.app.app_context():
            resource = Resource(course_id=course_id, title=title, file_path=file_path)
            db.session.add(resource)
            db.session.commit()
            return resource.id

    def enroll(self, student_id, course_id):
        with self.app.app_context():
            db.session.add(Enrollment(student_id=student_id, course_id=course_id))
            db.session.commit()

    def submission(self, assignment_id, student_id, text='my answer', grade=None):
        with self.app.app_context():
            submission = Submission(assignment_id=assignment_id, student_id=student_id,
                                    submission_text=text, grade=grade)
            db.session.add(submission)
            db.session.commit()
            return submission.id


@pytest.fixture
def make(app):
    return Factory(app)


@pytest.fixture
def login(client):
    """Return Authorization headers for a user, obtained through /api/login."""
    def _login(username, password=PASSWORD):
        response = client.post('/api/login', json={'username': username, 'password': password})
        assert response.status_code == 200, response.get_json()
        return {'Authorization': f"Bearer {response.get_json()['access_token']}"}
    return _login


@pytest.fixture
def world(make):
    """
    One admin, two lecturers each owning one course, a student enrolled in
    the first course and a second student enrolled nowhere.
    """
    ids = {}
    ids['admin'] = make.user('admin', role='admin')
    ids['lecturer'] = make.user('lecturer', role='lecturer')
    ids['other_lecturer'] = make.user('other_lecturer', role='lecturer')
    ids['student'] = make.user('student')
    ids['other_student'] = make.user('other_student')
    ids['course'] = make.course('CS101', [ids['lecturer']])
    ids['other_course'] = make.course('MA201', [ids['other_lecturer']])
    ids['assignment'] = make.assignment(ids['course'])
    make.enroll(ids['student'], ids['course'])
    return ids


class FakeStore:
    """In-memory stand-in for SqlAlchemyStore used by the gate unit tests."""

    def __init__(self):
        self.roles = {}
        self.lecturers = {}
        self.enrollments = set()
        self.assignments = {}
        self.submissions = {}
        self.resources = {}

    def get_user_role(self, user_id):
        return self.roles.get(user_id)

    def get_course_lecturers(self, course_id):
        if course_id not in self.lecturers:
            return None
        return frozenset(self.lecturers[course_id])

    def is_enrolled(self, student_id, course_id):
        return (student_id, course_id) in self.enrollments

    def get_assignment_course(self, assignment_id):
        return self.assignments.get(assignment_id, (None, None))[0]

    def get_assignment_due_date(self, assignment_id):
        return self.assignments.get(assignment_id, (None, None))[1]

    def get_submission_owner(self, submission_id):
        return self.submissions.get(submission_id, (None, None))[0]

    def get_submission_assignment(self, submission_id):
        return self.submissions.get(submission_id, (None, None))[1]

    def get_resource_course(self, resource_id):
        return self.resources.get(resource_id)


class BrokenStore:
    """Every lookup fails as if the database connection dropped."""

    def __getattr__(self, name):
        def lookup(*args):
            raise StoreUnavailable('connection refused')
        return lookup


ADMIN, LECTURER, OTHER_LECTURER, STUDENT, OTHER_STUDENT = 1, 2, 3, 4, 5
COURSE, OTHER_COURSE = 10, 20
ASSIGNMENT, OTHER_ASSIGNMENT = 100, 200
SUBMISSION = 1000
RESOURCE, OTHER_RESOURCE = 5000, 6000


@pytest.fixture
def store():
    store = FakeStore()
    store.roles = {ADMIN: 'admin', LECTURER: 'lecturer', OTHER_LECTURER: 'lecturer',
                   STUDENT: 'student', OTHER_STUDENT: 'student'}
    store.lecturers = {COURSE: {LECTURER}, OTHER_COURSE: {OTHER_LECTURER}}
    store.enrollments = {(STUDENT, COURSE)}
    store.assignments = {ASSIGNMENT: (COURSE, DUE), OTHER_ASSIGNMENT: (OTHER_COURSE, DUE)}
    store.submissions = {SUBMISSION: (STUDENT, ASSIGNMENT)}
    store.resources = {RESOURCE: COURSE, OTHER_RESOURCE: OTHER_COURSE}
    return store
