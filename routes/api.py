# routes/api.py

from flask import Blueprint, request
from flask_restful import Api, Resource, reqparse, abort
from flask_jwt_extended import create_access_token
from models import User, Course, Assignment, Submission, Resource as CourseResource, Announcement, Message
from extensions import db
from authorization import Action, Role
from identity import guard
import services
from services import ValidationError, ConflictError

api_bp = Blueprint('api', __name__)
api = Api(api_bp)

ANNOUNCEMENT_LIMIT = 10


def _apply(operation, *args, **kwargs):
    """Run a service call, turning its errors into HTTP responses."""
    try:
        return operation(*args, **kwargs)
    except ValidationError as e:
        abort(400, message=str(e))
    except ConflictError as e:
        abort(409, message=str(e))


def _int_or_none(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _get_or_404(model, ident, message):
    obj = db.session.get(model, ident)
    if obj is None:
        abort(404, message=message)
    return obj


# API Login Endpoint
class UserLogin(Resource):
    def post(self):
        parser = reqparse.RequestParser()
        parser.add_argument('username', type=str)
        parser.add_argument('email', type=str)
        parser.add_argument('password', type=str)
        args = parser.parse_args()

        login = args['username'] or args['email']
        if not login or not args['password']:
            return {"message": "Username (or email) and password are required."}, 400

        user = User.query.filter((User.username == login) | (User.email == login)).first()
        if user is None or not user.check_password(args['password']):
            return {"message": "Bad username or password"}, 401

        # The identity loader stores the user's id as the token subject
        access_token = create_access_token(identity=user)
        return {"access_token": access_token, "user": user.to_dict()}, 200


# Course Endpoints
class CourseList(Resource):
    def get(self):
        identity = guard(Action.READ_COURSE)
        if identity.role == Role.LECTURER:
            courses = db.session.get(User, identity.user_id).teaching_courses
        else:
            courses = Course.query.order_by(Course.code).all()
        return [course.to_dict() for course in courses]

    def post(self):
        identity = guard(Action.CREATE_COURSE)

        parser = reqparse.RequestParser()
        parser.add_argument('code', type=str, required=True, help="Course code is required")
        parser.add_argument('title', type=str, required=True, help="Course title is required")
        parser.add_argument('description', type=str)
        parser.add_argument('semester', type=str)
        parser.add_argument('year', type=int)
        parser.add_argument('lecturer_ids', type=int, action='append')
        args = parser.parse_args()

        course = _apply(services.create_course, identity, **args)
        return {"message": "Course created successfully", "course": course.to_dict()}, 201


class CourseDetail(Resource):
    def get(self, course_id):
        guard(Action.READ_COURSE, course_id=course_id)
        return db.session.get(Course, course_id).to_dict()


class CourseEnroll(Resource):
    def post(self, course_id):
        identity = guard(Action.ENROLL_SELF, course_id=course_id)
        course = db.session.get(Course, course_id)
        _apply(services.enroll_student, identity.user_id, course_id)
        return {"message": f"Successfully enrolled in course: {course.title}"}, 201


class CourseStudents(Resource):
    def get(self, course_id):
        guard(Action.READ_COURSE_ROSTER, course_id=course_id)
        course = db.session.get(Course, course_id)
        roster = []
        for enrollment in course.enrollments:
            student = enrollment.student.to_dict()
            student['enrolled_at'] = enrollment.to_dict()['enrolled_at']
            roster.append(student)
        return roster


class CourseAssignments(Resource):
    def get(self, course_id):
        guard(Action.READ_COURSE_CONTENT, course_id=course_id)
        assignments = Assignment.query.filter_by(course_id=course_id).order_by(Assignment.due_date).all()
        return [a.to_dict() for a in assignments]

    def post(self, course_id):
        guard(Action.CREATE_ASSIGNMENT, course_id=course_id)

        parser = reqparse.RequestParser()
        parser.add_argument('title', required=True, help="Assignment title is required")
        parser.add_argument('description')
        parser.add_argument('due_date', required=True, help="Due date is required")
        parser.add_argument('max_points', default=100)
        args = parser.parse_args()

        assignment = _apply(services.create_assignment, course_id, **args)
        return {"message": "Assignment created successfully", "assignment": assignment.to_dict()}, 201


class CourseResources(Resource):
    def get(self, course_id):
        guard(Action.READ_COURSE_CONTENT, course_id=course_id)
        return [r.to_dict() for r in db.session.get(Course, course_id).resources]

    def post(self, course_id):
        guard(Action.UPLOAD_RESOURCE, course_id=course_id)

        parser = reqparse.RequestParser()
        parser.add_argument('title', type=str, required=True, help="Resource title is required")
        parser.add_argument('file_path', type=str, required=True, help="Resource file path is required")
        parser.add_argument('type', type=str)
        args = parser.parse_args()

        resource = _apply(services.add_resource, course_id, args['title'], args['file_path'], args['type'])
        return {"message": "Resource uploaded successfully", "resource": resource.to_dict()}, 201


class CourseResourceDetail(Resource):
    def put(self, course_id, resource_id):
        guard(Action.UPDATE_RESOURCE, course_id=course_id, resource_id=resource_id)

        parser = reqparse.RequestParser()
        parser.add_argument('title', type=str, store_missing=False)
        parser.add_argument('file_path', type=str, store_missing=False)
        parser.add_argument('type', type=str, store_missing=False)
        args = parser.parse_args()

        resource = db.session.get(CourseResource, resource_id)
        _apply(services.update_resource, resource, **args)
        return {"message": f"Resource \"{resource.title}\" updated successfully.", "resource": resource.to_dict()}

    def delete(self, course_id, resource_id):
        guard(Action.DELETE_RESOURCE, course_id=course_id, resource_id=resource_id)
        _apply(services.delete_resource, db.session.get(CourseResource, resource_id))
        return {"message": "Resource deleted successfully"}


# Assignment Endpoints
class AssignmentDetail(Resource):
    def get(self, assignment_id):
        guard(Action.READ_COURSE_CONTENT, assignment_id=assignment_id)
        return db.session.get(Assignment, assignment_id).to_dict()

    def put(self, assignment_id):
        guard(Action.UPDATE_ASSIGNMENT, assignment_id=assignment_id)

        # Partial update: only fields present in the body are changed
        parser = reqparse.RequestParser()
        parser.add_argument('title', store_missing=False)
        parser.add_argument('description', store_missing=False)
        parser.add_argument('due_date', store_missing=False)
        parser.add_argument('max_points', store_missing=False)
        args = parser.parse_args()

        assignment = db.session.get(Assignment, assignment_id)
        _apply(services.update_assignment, assignment, **args)
        return {"message": "Assignment updated successfully", "assignment": assignment.to_dict()}

    def delete(self, assignment_id):
        guard(Action.DELETE_ASSIGNMENT, assignment_id=assignment_id)
        _apply(services.delete_assignment, db.session.get(Assignment, assignment_id))
        return {"message": "Assignment deleted successfully"}


class AssignmentSubmit(Resource):
    def post(self, assignment_id):
        identity = guard(Action.SUBMIT_ASSIGNMENT, assignment_id=assignment_id)

        parser = reqparse.RequestParser()
        parser.add_argument('submission_text', type=str)
        parser.add_argument('file_path', type=str)
        args = parser.parse_args()

        submission, created = _apply(services.submit_assignment, assignment_id, identity.user_id,
                                     args['submission_text'], args['file_path'])
        if created:
            return {"message": "Assignment submitted successfully", "submission": submission.to_dict()}, 201
        return {"message": "Submission updated successfully", "submission": submission.to_dict()}, 200


class AssignmentSubmissions(Resource):
    def get(self, assignment_id):
        guard(Action.READ_SUBMISSIONS_FOR_ASSIGNMENT, assignment_id=assignment_id)
        submissions = Submission.query.filter_by(assignment_id=assignment_id).order_by(Submission.submitted_at).all()
        return [s.to_dict(with_student=True) for s in submissions]


# Submission Endpoints
class SubmissionDetail(Resource):
    def get(self, submission_id):
        guard(Action.READ_OWN_SUBMISSIONS, submission_id=submission_id)
        return db.session.get(Submission, submission_id).to_dict(with_student=True)


class SubmissionGrade(Resource):
    def put(self, submission_id):
        guard(Action.GRADE_SUBMISSION, submission_id=submission_id)

        parser = reqparse.RequestParser()
        parser.add_argument('grade', required=True, help="Grade is required")
        parser.add_argument('feedback')
        args = parser.parse_args()

        submission = db.session.get(Submission, submission_id)
        _apply(services.grade_submission, submission, args['grade'], args['feedback'])
        return {"message": "Submission graded successfully", "submission": submission.to_dict()}


class MySubmissions(Resource):
    def get(self):
        identity = guard(Action.READ_OWN_SUBMISSIONS)
        submissions = Submission.query.filter_by(student_id=identity.user_id).order_by(Submission.submitted_at.desc()).all()
        return [s.to_dict() for s in submissions]


# Admin Endpoints
def _user_parser():
    parser = reqparse.RequestParser()
    parser.add_argument('username', type=str)
    parser.add_argument('email', type=str)
    parser.add_argument('password', type=str)
    parser.add_argument('role', type=str)
    return parser


class AdminUserList(Resource):
    def get(self):
        guard(Action.MANAGE_USERS)
        role = request.args.get('role')
        query = User.query
        if role:
            query = query.filter_by(role=role)
        return [u.to_dict() for u in query.order_by(User.id).all()]

    def post(self):
        guard(Action.MANAGE_USERS)
        args = _user_parser().parse_args()
        user = _apply(services.create_user, args['username'], args['email'], args['password'],
                      args['role'] or Role.STUDENT.value)
        return {"message": f"User {user.username} created successfully", "user": user.to_dict()}, 201


class AdminUser(Resource):
    def get(self, user_id):
        guard(Action.MANAGE_USERS)
        return _get_or_404(User, user_id, 'User not found.').to_dict()

    def put(self, user_id):
        identity = guard(Action.MANAGE_USERS)
        user = _get_or_404(User, user_id, 'User not found.')
        args = _user_parser().parse_args()
        _apply(services.update_user, user, identity.user_id, **args)
        return {"message": "User updated successfully", "user": user.to_dict()}

    def delete(self, user_id):
        identity = guard(Action.MANAGE_USERS)
        user = _get_or_404(User, user_id, 'User not found.')
        username = user.username
        _apply(services.delete_user, user, identity.user_id)
        return {"message": f"User {username} deleted successfully"}


class AdminCourseList(Resource):
    def get(self):
        guard(Action.MANAGE_COURSES)
        courses = []
        for course in Course.query.order_by(Course.code).all():
            data = course.to_dict()
            data['enrollment_count'] = len(course.enrollments)
            courses.append(data)
        return courses


class AdminCourse(Resource):
    def put(self, course_id):
        guard(Action.MANAGE_COURSES)
        course = _get_or_404(Course, course_id, 'Course not found.')

        parser = reqparse.RequestParser()
        parser.add_argument('title', type=str, required=True, help="Course title is required")
        parser.add_argument('semester', type=str, required=True, help="Semester is required")
        parser.add_argument('year', type=int, required=True, help="Year is required")
        parser.add_argument('description', type=str)
        parser.add_argument('code', type=str)
        parser.add_argument('lecturer_ids', type=int, action='append')
        args = parser.parse_args()

        _apply(services.update_course, course, **args)
        return {"message": "Course updated successfully", "course": course.to_dict()}

    def delete(self, course_id):
        guard(Action.MANAGE_COURSES)
        course = _get_or_404(Course, course_id, 'Course not found.')
        _apply(services.delete_course, course)
        return {"message": f"Course ID {course_id} successfully deleted."}


class AdminCourseLecturers(Resource):
    def put(self, course_id):
        guard(Action.MANAGE_COURSES)
        course = _get_or_404(Course, course_id, 'Course not found.')

        parser = reqparse.RequestParser()
        parser.add_argument('lecturer_ids', type=int, action='append')
        args = parser.parse_args()

        _apply(services.set_course_lecturers, course, args['lecturer_ids'])
        return {"message": "Course lecturers updated", "course": course.to_dict()}


# Lecturer Endpoints
class LecturerProfile(Resource):
    def get(self):
        identity = guard(Action.MANAGE_OWN_PROFILE)
        return db.session.get(User, identity.user_id).to_dict()

    def put(self):
        identity = guard(Action.MANAGE_OWN_PROFILE)

        parser = reqparse.RequestParser()
        parser.add_argument('username', type=str)
        parser.add_argument('email', type=str)
        parser.add_argument('old_password', type=str)
        parser.add_argument('new_password', type=str)
        args = parser.parse_args()

        user = db.session.get(User, identity.user_id)
        _apply(services.update_profile, user, **args)
        return {"message": "Profile updated successfully.", "user": user.to_dict()}


# Announcements and Messages
class AnnouncementList(Resource):
    def get(self):
        guard(Action.READ_ANNOUNCEMENTS)
        announcements = Announcement.query.order_by(
            Announcement.created_at.desc(), Announcement.id.desc()).limit(ANNOUNCEMENT_LIMIT).all()
        return [a.to_dict() for a in announcements]

    def post(self):
        identity = guard(Action.POST_ANNOUNCEMENT)

        parser = reqparse.RequestParser()
        parser.add_argument('title', type=str, required=True, help="Announcement title is required")
        parser.add_argument('content', type=str, required=True, help="Announcement content is required")
        args = parser.parse_args()

        announcement = _apply(services.post_announcement, identity.user_id, args['title'], args['content'])
        return {"message": "Announcement posted successfully", "announcement": announcement.to_dict()}, 201


def _mailbox(user_id, course_id=None):
    query = Message.query.filter((Message.sender_id == user_id) | (Message.recipient_id == user_id))
    if course_id is not None:
        query = query.filter_by(course_id=course_id)
    return [m.to_dict() for m in query.order_by(Message.created_at, Message.id).all()]


class MessageList(Resource):
    def get(self):
        identity = guard(Action.READ_MESSAGES)
        return _mailbox(identity.user_id, request.args.get('course_id', type=int))

    def post(self):
        # The recipient is part of the target, so it is read before the gate runs
        data = request.get_json(silent=True) or {}
        recipient_id = _int_or_none(data.get('recipient_id'))
        course_id = _int_or_none(data.get('course_id'))
        identity = guard(Action.SEND_MESSAGE, user_id=recipient_id, course_id=course_id)

        message = _apply(services.send_message, identity.user_id, recipient_id, data.get('content'), course_id)
        return {"message": "Message sent", "data": message.to_dict()}, 201


class UserMessages(Resource):
    def get(self, user_id):
        guard(Action.READ_MESSAGES, user_id=user_id)
        return _mailbox(user_id, request.args.get('course_id', type=int))


# Register API resources with the blueprint
api.add_resource(UserLogin, '/login')
api.add_resource(CourseList, '/courses')
api.add_resource(CourseDetail, '/courses/<int:course_id>')
api.add_resource(CourseEnroll, '/courses/<int:course_id>/enroll')
api.add_resource(CourseStudents, '/courses/<int:course_id>/students')
api.add_resource(CourseAssignments, '/courses/<int:course_id>/assignments')
api.add_resource(CourseResources, '/courses/<int:course_id>/resources')
api.add_resource(CourseResourceDetail, '/courses/<int:course_id>/resources/<int:resource_id>')
api.add_resource(AssignmentDetail, '/assignments/<int:assignment_id>')
api.add_resource(AssignmentSubmit, '/assignments/<int:assignment_id>/submit')
api.add_resource(AssignmentSubmissions, '/assignments/<int:assignment_id>/submissions')
api.add_resource(MySubmissions, '/submissions/my')
api.add_resource(SubmissionDetail, '/submissions/<int:submission_id>')
api.add_resource(SubmissionGrade, '/submissions/<int:submission_id>/grade')
api.add_resource(AdminUserList, '/admin/users')
api.add_resource(AdminUser, '/admin/users/<int:user_id>')
api.add_resource(AdminCourseList, '/admin/courses')
api.add_resource(AdminCourse, '/admin/courses/<int:course_id>')
api.add_resource(AdminCourseLecturers, '/admin/courses/<int:course_id>/lecturers')
api.add_resource(LecturerProfile, '/lecturer/profile')
api.add_resource(AnnouncementList, '/announcements')
api.add_resource(MessageList, '/messages')
api.add_resource(UserMessages, '/messages/<int:user_id>')
