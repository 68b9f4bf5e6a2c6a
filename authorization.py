# authorization.py
"""
Centralized authorization for the LMS.

Every state-mutating or sensitive-read handler asks ``authorize()`` before it
touches the database. The decision is computed from three inputs:

- the caller's ``Identity`` (or ``None`` when there is no session),
- an ``Action`` from a closed set,
- a ``Target`` naming the course/assignment/submission/user being acted on,

plus the facts a store object can look up (course lecturers, enrollments,
due dates, submission owners). The gate never writes.

Checks always run in this order so that anonymous callers cannot probe for
the existence of resources:

    authenticate -> resource exists -> role -> ownership -> deadline
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, FrozenSet, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """User roles in the system"""
    STUDENT = 'student'
    LECTURER = 'lecturer'
    ADMIN = 'admin'

    def __str__(self):
        return self.value

    @classmethod
    def from_string(cls, role_str: Optional[str]) -> Optional['Role']:
        """Convert a stored role string to a Role, or None if it is not one."""
        if not role_str:
            return None
        role_str = role_str.lower().strip()
        for role in cls:
            if role.value == role_str:
                return role
        return None

    @classmethod
    def get_all(cls) -> list[str]:
        return [role.value for role in cls]


class Action(str, Enum):
    CREATE_COURSE = 'CreateCourse'
    READ_COURSE = 'ReadCourse'
    READ_COURSE_CONTENT = 'ReadCourseContent'
    MANAGE_COURSES = 'ManageCourses'
    READ_COURSE_ROSTER = 'ReadCourseRoster'
    UPLOAD_RESOURCE = 'UploadResource'
    UPDATE_RESOURCE = 'UpdateResource'
    DELETE_RESOURCE = 'DeleteResource'
    ENROLL_SELF = 'EnrollSelf'
    CREATE_ASSIGNMENT = 'CreateAssignment'
    UPDATE_ASSIGNMENT = 'UpdateAssignment'
    DELETE_ASSIGNMENT = 'DeleteAssignment'
    SUBMIT_ASSIGNMENT = 'SubmitAssignment'
    GRADE_SUBMISSION = 'GradeSubmission'
    READ_SUBMISSIONS_FOR_ASSIGNMENT = 'ReadSubmissionsForAssignment'
    READ_OWN_SUBMISSIONS = 'ReadOwnSubmissions'
    MANAGE_USERS = 'ManageUsers'
    MANAGE_OWN_PROFILE = 'ManageOwnProfile'
    POST_ANNOUNCEMENT = 'PostAnnouncement'
    READ_ANNOUNCEMENTS = 'ReadAnnouncements'
    SEND_MESSAGE = 'SendMessage'
    READ_MESSAGES = 'ReadMessages'

    def __str__(self):
        return self.value


class Reason(str, Enum):
    """Why a request was denied. Each reason maps to one HTTP status."""
    UNAUTHENTICATED = 'Unauthenticated'
    WRONG_ROLE = 'WrongRole'
    NOT_OWNER = 'NotOwner'
    NOT_ENROLLED = 'NotEnrolled'
    DEADLINE_PASSED = 'DeadlinePassed'
    RESOURCE_NOT_FOUND = 'ResourceNotFound'

    def __str__(self):
        return self.value

    @property
    def status_code(self) -> int:
        return REASON_STATUS[self]

    @property
    def message(self) -> str:
        return REASON_MESSAGES[self]


REASON_STATUS = {
    Reason.UNAUTHENTICATED: 401,
    Reason.WRONG_ROLE: 403,
    Reason.NOT_OWNER: 403,
    Reason.NOT_ENROLLED: 403,
    Reason.DEADLINE_PASSED: 403,
    Reason.RESOURCE_NOT_FOUND: 404,
}

REASON_MESSAGES = {
    Reason.UNAUTHENTICATED: 'Authentication required.',
    Reason.WRONG_ROLE: 'Forbidden. Your role does not allow this action.',
    Reason.NOT_OWNER: 'Forbidden. You are not assigned to this resource.',
    Reason.NOT_ENROLLED: 'Access Denied: You are not enrolled in the course for this assignment.',
    Reason.DEADLINE_PASSED: 'Submission failed: The deadline for this assignment has passed.',
    Reason.RESOURCE_NOT_FOUND: 'The requested resource was not found.',
}


class StoreUnavailable(Exception):
    """The data store could not answer a lookup (connection lost, timeout...).

    Distinct from a denial: the caller could not determine the answer.
    """


@dataclass(frozen=True)
class Identity:
    user_id: int
    role: Optional[Role]


@dataclass(frozen=True)
class Target:
    course_id: Optional[int] = None
    assignment_id: Optional[int] = None
    submission_id: Optional[int] = None
    user_id: Optional[int] = None
    resource_id: Optional[int] = None


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[Reason] = None

    def __bool__(self):
        return self.allowed

    @property
    def status_code(self) -> int:
        return 200 if self.allowed else self.reason.status_code

    @property
    def message(self) -> Optional[str]:
        return None if self.allowed else self.reason.message


ALLOW = Decision(True)


def deny(reason: Reason) -> Decision:
    return Decision(False, reason)


@dataclass(frozen=True)
class Facts:
    """Ownership facts fetched for one target."""
    course_id: Optional[int] = None
    lecturers: FrozenSet[int] = frozenset()
    due_date: Optional[datetime] = None
    submission_owner: Optional[int] = None
    user_id: Optional[int] = None


# --- Resolvers: Target -> Facts, or None when something named does not exist ---

def _nothing(target, store):
    return Facts()


def _course(target, store):
    if target.course_id is None:
        return None
    lecturers = store.get_course_lecturers(target.course_id)
    if lecturers is None:
        return None
    return Facts(course_id=target.course_id, lecturers=frozenset(lecturers))


def _assignment(target, store):
    if target.assignment_id is None:
        return None
    course_id = store.get_assignment_course(target.assignment_id)
    if course_id is None:
        return None
    due_date = store.get_assignment_due_date(target.assignment_id)
    lecturers = store.get_course_lecturers(course_id)
    if due_date is None or lecturers is None:
        return None
    return Facts(course_id=course_id, lecturers=frozenset(lecturers), due_date=due_date)


def _submission(target, store):
    if target.submission_id is None:
        return None
    owner = store.get_submission_owner(target.submission_id)
    assignment_id = store.get_submission_assignment(target.submission_id)
    if owner is None or assignment_id is None:
        return None
    facts = _assignment(Target(assignment_id=assignment_id), store)
    if facts is None:
        return None
    return Facts(course_id=facts.course_id, lecturers=facts.lecturers,
                 due_date=facts.due_date, submission_owner=owner)


def _course_scope(target, store):
    # An assignment id wins over a course id; no id at all means a listing.
    if target.assignment_id is not None:
        return _assignment(target, store)
    if target.course_id is not None:
        return _course(target, store)
    return Facts()


def _course_content(target, store):
    if target.assignment_id is not None:
        return _assignment(target, store)
    return _course(target, store)


def _resource(target, store):
    if target.resource_id is None:
        return None
    course_id = store.get_resource_course(target.resource_id)
    # A resource addressed under the wrong course does not exist there
    if course_id is None or (target.course_id is not None and course_id != target.course_id):
        return None
    return _course(Target(course_id=course_id), store)


def _optional_submission(target, store):
    if target.submission_id is None:
        return Facts()
    return _submission(target, store)


def _user(target, store):
    if target.user_id is None or store.get_user_role(target.user_id) is None:
        return None
    if target.course_id is not None and store.get_course_lecturers(target.course_id) is None:
        return None
    return Facts(user_id=target.user_id, course_id=target.course_id)


def _optional_user(target, store):
    if target.user_id is None:
        return Facts()
    return _user(target, store)


# --- Ownership predicates: return a denial reason, or None when satisfied ---

def _teaches_course(identity, facts, store):
    if identity.user_id not in facts.lecturers:
        return Reason.NOT_OWNER
    return None


def _enrolled_in_course(identity, facts, store):
    if not store.is_enrolled(identity.user_id, facts.course_id):
        return Reason.NOT_ENROLLED
    return None


def _member_of_course(identity, facts, store):
    if identity.role == Role.LECTURER:
        return _teaches_course(identity, facts, store)
    return _enrolled_in_course(identity, facts, store)


def _owns_submission(identity, facts, store):
    if facts.submission_owner is None:
        # Listing one's own submissions
        return None
    if identity.role == Role.LECTURER:
        return _teaches_course(identity, facts, store)
    if facts.submission_owner != identity.user_id:
        return Reason.NOT_OWNER
    return None


def _owns_mailbox(identity, facts, store):
    if facts.user_id is not None and facts.user_id != identity.user_id:
        return Reason.NOT_OWNER
    return None


@dataclass(frozen=True)
class Rule:
    """One row of the capability table."""
    roles: FrozenSet[Role]
    resolve: Callable = _nothing
    owner: Optional[Callable] = None
    deadline: bool = False


ANY_ROLE = frozenset(Role)
ADMIN_ONLY = frozenset({Role.ADMIN})
STAFF = frozenset({Role.LECTURER, Role.ADMIN})
STUDENT_ONLY = frozenset({Role.STUDENT})
LECTURER_ONLY = frozenset({Role.LECTURER})

POLICY = {
    Action.MANAGE_USERS: Rule(ADMIN_ONLY),
    Action.POST_ANNOUNCEMENT: Rule(ADMIN_ONLY),
    Action.MANAGE_COURSES: Rule(ADMIN_ONLY),
    Action.CREATE_COURSE: Rule(STAFF),
    Action.MANAGE_OWN_PROFILE: Rule(LECTURER_ONLY),

    Action.CREATE_ASSIGNMENT: Rule(STAFF, _course, _teaches_course),
    Action.READ_COURSE_ROSTER: Rule(STAFF, _course, _teaches_course),
    Action.UPLOAD_RESOURCE: Rule(STAFF, _course, _teaches_course),
    Action.UPDATE_RESOURCE: Rule(STAFF, _resource, _teaches_course),
    Action.DELETE_RESOURCE: Rule(STAFF, _resource, _teaches_course),
    Action.UPDATE_ASSIGNMENT: Rule(STAFF, _assignment, _teaches_course),
    Action.DELETE_ASSIGNMENT: Rule(STAFF, _assignment, _teaches_course),
    Action.READ_SUBMISSIONS_FOR_ASSIGNMENT: Rule(STAFF, _assignment, _teaches_course),
    Action.GRADE_SUBMISSION: Rule(STAFF, _submission, _teaches_course),

    Action.ENROLL_SELF: Rule(STUDENT_ONLY, _course),
    Action.SUBMIT_ASSIGNMENT: Rule(STUDENT_ONLY, _assignment, _enrolled_in_course, deadline=True),

    Action.READ_COURSE: Rule(ANY_ROLE, _course_scope),
    Action.READ_COURSE_CONTENT: Rule(ANY_ROLE, _course_content, _member_of_course),
    Action.READ_OWN_SUBMISSIONS: Rule(ANY_ROLE, _optional_submission, _owns_submission),
    Action.READ_ANNOUNCEMENTS: Rule(ANY_ROLE),
    Action.SEND_MESSAGE: Rule(ANY_ROLE, _user),
    Action.READ_MESSAGES: Rule(ANY_ROLE, _optional_user, _owns_mailbox),
}


def authorize(identity: Optional[Identity], action: Action, target: Optional[Target],
              store, now: Optional[datetime] = None) -> Decision:
    """
    Decide whether ``identity`` may perform ``action`` on ``target``.

    Args:
        identity: the authenticated caller, or None for no session
        action: the requested Action
        target: ids of the course/assignment/submission/user/resource acted on
        store: data-access object providing the ownership lookups
        now: current time for deadline checks (defaults to utcnow)

    Returns:
        ALLOW, or a Decision carrying the denial Reason

    Raises:
        StoreUnavailable: if a lookup could not be answered
    """
    rule = POLICY[Action(action)]
    target = target or Target()

    if identity is None:
        return _denied(identity, action, Reason.UNAUTHENTICATED)

    # The stored role is authoritative; a session for a deleted user is no session.
    stored_role = store.get_user_role(identity.user_id)
    if stored_role is None:
        return _denied(identity, action, Reason.UNAUTHENTICATED)
    caller = Identity(identity.user_id, Role.from_string(stored_role))

    facts = rule.resolve(target, store)
    if facts is None:
        return _denied(caller, action, Reason.RESOURCE_NOT_FOUND)

    if caller.role not in rule.roles:
        return _denied(caller, action, Reason.WRONG_ROLE)

    if rule.owner is not None and caller.role != Role.ADMIN:
        reason = rule.owner(caller, facts, store)
        if reason is not None:
            return _denied(caller, action, reason)

    if rule.deadline:
        now = now or datetime.utcnow()
        if now > facts.due_date:
            return _denied(caller, action, Reason.DEADLINE_PASSED)

    return ALLOW


def _denied(identity, action, reason):
    logger.info("Denied %s for user %s: %s",
                action, identity.user_id if identity else 'anonymous', reason)
    return deny(reason)
