"""
Status workflow for complaints and document requests.

Every transition goes through a guard here before the data layer writes
anything: the acting role must be staff or admin, the action must be known,
and the current status must be one the action is allowed from. The set of
actions offered to a client is derived from the same tables, so what the UI
shows and what the server accepts cannot drift apart.
"""
import logging
from dataclasses import dataclass
from enum import Enum

from errors import AuthenticationRequired, InvalidTransition, Unauthorized, ValidationFailed

logger = logging.getLogger(__name__)


class Role(str, Enum):
    CITIZEN = 'citizen'
    STAFF = 'staff'
    ADMIN = 'admin'


STAFF_ROLES = frozenset({Role.STAFF, Role.ADMIN})


class ComplaintStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in-progress'
    RESOLVED = 'resolved'
    REJECTED = 'rejected'
    # Kept in the closed set so stored rows stay readable; no action produces it.
    VERIFIED = 'verified'


class DocumentStatus(str, Enum):
    PENDING = 'pending'
    VERIFIED = 'verified'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class DocumentType(str, Enum):
    BIRTH = 'birth'
    DEATH = 'death'
    MARRIAGE = 'marriage'
    INCOME = 'income'
    RESIDENCE = 'residence'
    OTHER = 'other'


class ComplaintAction(str, Enum):
    MARK_IN_PROGRESS = 'markInProgress'
    MARK_RESOLVED = 'markResolved'
    MARK_REJECTED = 'markRejected'


class DocumentAction(str, Enum):
    VERIFY = 'verify'
    APPROVE = 'approve'
    REJECT = 'reject'


# action -> (statuses it may start from, status it produces)
COMPLAINT_TRANSITIONS = {
    ComplaintAction.MARK_IN_PROGRESS: (frozenset({ComplaintStatus.PENDING}), ComplaintStatus.IN_PROGRESS),
    ComplaintAction.MARK_RESOLVED: (frozenset({ComplaintStatus.IN_PROGRESS}), ComplaintStatus.RESOLVED),
    ComplaintAction.MARK_REJECTED: (
        frozenset({ComplaintStatus.PENDING, ComplaintStatus.IN_PROGRESS}),
        ComplaintStatus.REJECTED,
    ),
}

DOCUMENT_TRANSITIONS = {
    DocumentAction.VERIFY: (frozenset({DocumentStatus.PENDING}), DocumentStatus.VERIFIED),
    DocumentAction.APPROVE: (
        frozenset({DocumentStatus.PENDING, DocumentStatus.VERIFIED}),
        DocumentStatus.APPROVED,
    ),
    DocumentAction.REJECT: (
        frozenset({DocumentStatus.PENDING, DocumentStatus.VERIFIED}),
        DocumentStatus.REJECTED,
    ),
}

TERMINAL_COMPLAINT_STATUSES = frozenset({ComplaintStatus.RESOLVED, ComplaintStatus.REJECTED})
TERMINAL_DOCUMENT_STATUSES = frozenset({DocumentStatus.APPROVED, DocumentStatus.REJECTED})

# Older dashboard payloads sent these names.
COMPLAINT_ACTION_ALIASES = {
    'inProgress': ComplaintAction.MARK_IN_PROGRESS,
    'resolved': ComplaintAction.MARK_RESOLVED,
    'rejected': ComplaintAction.MARK_REJECTED,
}


@dataclass(frozen=True)
class Actor:
    """The authenticated principal a guarded operation runs on behalf of."""
    id: str
    role: Role

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    @property
    def is_admin(self):
        return self.role == Role.ADMIN


def parse_role(value):
    try:
        return Role(value)
    except ValueError:
        raise ValidationFailed(f'Unknown role: {value!r}', fields={'role': 'Role must be citizen, staff or admin.'})


def resolve_actor(principal_id, profile):
    if not principal_id:
        raise AuthenticationRequired('Please sign in to continue.')
    if not profile:
        raise AuthenticationRequired('No profile is linked to this session.')
    try:
        role = Role(profile.get('role'))
    except ValueError:
        raise Unauthorized('Profile role is not recognised.')
    return Actor(id=str(principal_id), role=role)


def require_staff(actor, action=None):
    if actor is None:
        raise AuthenticationRequired('Please sign in to continue.')
    if not actor.is_staff:
        logger.warning("Refused %s for actor=%s role=%s", action or 'staff action', actor.id, actor.role.value)
        raise Unauthorized('Only staff or admin can perform this action.')


def require_admin(actor):
    if actor is None:
        raise AuthenticationRequired('Please sign in to continue.')
    if not actor.is_admin:
        logger.warning("Refused admin action for actor=%s role=%s", actor.id, actor.role.value)
        raise Unauthorized('Only admin can perform this action.')


def can_view(actor, row):
    if actor is None or not row:
        return False
    return actor.is_staff or str(row.get('user_id')) == actor.id


def ensure_can_view(actor, row):
    if actor is None:
        raise AuthenticationRequired('Please sign in to continue.')
    if not can_view(actor, row):
        raise Unauthorized('You can only access your own records.')


def coerce_complaint_status(value):
    try:
        return ComplaintStatus(value)
    except ValueError:
        raise InvalidTransition(f'Complaint has an unknown status: {value!r}')


def coerce_document_status(value):
    try:
        return DocumentStatus(value)
    except ValueError:
        raise InvalidTransition(f'Document request has an unknown status: {value!r}')


def parse_complaint_action(value):
    if not isinstance(value, str):
        raise ValidationFailed(f'Unsupported complaint action: {value!r}', fields={'action': 'Unsupported action.'})
    text = value.strip()
    if text in COMPLAINT_ACTION_ALIASES:
        return COMPLAINT_ACTION_ALIASES[text]
    try:
        return ComplaintAction(text)
    except ValueError:
        raise ValidationFailed(f'Unsupported complaint action: {value!r}', fields={'action': 'Unsupported action.'})


def parse_document_action(value):
    if not isinstance(value, str):
        raise ValidationFailed(f'Unsupported document action: {value!r}', fields={'action': 'Unsupported action.'})
    text = value.strip()
    try:
        return DocumentAction(text)
    except ValueError:
        raise ValidationFailed(f'Unsupported document action: {value!r}', fields={'action': 'Unsupported action.'})


def _actions_for(table, status, role):
    try:
        parsed_role = Role(role)
    except ValueError:
        return []
    if parsed_role not in STAFF_ROLES:
        return []
    return [action.value for action, (sources, _target) in table.items() if status in sources]


def available_complaint_actions(status, role):
    """Actions a principal with ``role`` may run on a complaint in ``status``."""
    try:
        current = ComplaintStatus(status)
    except ValueError:
        return []
    return _actions_for(COMPLAINT_TRANSITIONS, current, role)


def available_document_actions(status, role):
    try:
        current = DocumentStatus(status)
    except ValueError:
        return []
    return _actions_for(DOCUMENT_TRANSITIONS, current, role)


def plan_complaint_transition(complaint, actor, action):
    """Return the column updates for ``action`` or raise why it is refused."""
    require_staff(actor, action)
    parsed = parse_complaint_action(action)
    current = coerce_complaint_status(complaint.get('status'))
    sources, target = COMPLAINT_TRANSITIONS[parsed]
    if current not in sources:
        logger.warning(
            "Refused complaint %s: %s from status %s by %s",
            complaint.get('id'), parsed.value, current.value, actor.id
        )
        raise InvalidTransition(f'Cannot apply {parsed.value} to a complaint that is {current.value}.')

    updates = {'status': target.value}
    if parsed == ComplaintAction.MARK_IN_PROGRESS:
        updates['assigned_to'] = actor.id
    return updates


def plan_document_transition(document_request, actor, action, rejection_reason=None):
    require_staff(actor, action)
    parsed = parse_document_action(action)
    current = coerce_document_status(document_request.get('status'))
    sources, target = DOCUMENT_TRANSITIONS[parsed]
    if current not in sources:
        logger.warning(
            "Refused document request %s: %s from status %s by %s",
            document_request.get('id'), parsed.value, current.value, actor.id
        )
        raise InvalidTransition(f'Cannot {parsed.value} a document request that is {current.value}.')

    updates = {'status': target.value}
    if parsed == DocumentAction.VERIFY:
        updates['verified_by'] = actor.id
    elif parsed == DocumentAction.APPROVE:
        updates['approved_by'] = actor.id
    else:
        reason = (rejection_reason or '').strip()
        updates['rejection_reason'] = reason or None
    return updates
