"""Role-based authorization.

Every handler asks the same question, ``is_allowed(role, action, resource)``,
and the answer comes from the single table below. ``role`` is ``None`` for
anonymous callers. Ownership (a guest may only touch their own bookings,
payments and reviews) is enforced by the viewsets scoping their querysets,
not here.
"""
from .models import User

Role = User.Role

ADMIN = Role.ADMIN.value
MANAGER = Role.MANAGER.value
STAFF = Role.STAFF.value
CONCIERGE = Role.CONCIERGE.value
GUEST = Role.GUEST.value

ANONYMOUS = None
EVERYONE = frozenset({ANONYMOUS, ADMIN, MANAGER, STAFF, CONCIERGE, GUEST})
SIGNED_IN = frozenset({ADMIN, MANAGER, STAFF, CONCIERGE, GUEST})
MANAGEMENT = frozenset({ADMIN, MANAGER})
FRONT_DESK = frozenset({ADMIN, MANAGER, STAFF, CONCIERGE})
FINANCE = frozenset({ADMIN, MANAGER, STAFF})

# Actions DRF exposes under different names but which mean the same thing here.
ACTION_ALIASES = {
    'partial_update': 'update',
    'metadata': 'retrieve',
}

POLICY = {
    'room': {
        'list': EVERYONE,
        'retrieve': EVERYONE,
        'create': MANAGEMENT,
        'update': MANAGEMENT,
        'destroy': MANAGEMENT,
        'maintenance': MANAGEMENT,
        'release': MANAGEMENT,
    },
    'booking': {
        'list': SIGNED_IN,
        'retrieve': SIGNED_IN,
        'mine': SIGNED_IN,
        'create': SIGNED_IN,
        'update': MANAGEMENT,
        'destroy': frozenset({ADMIN}),
        'confirm': FINANCE,
        'check_in': FRONT_DESK,
        'check_out': FRONT_DESK,
        'cancel': SIGNED_IN,
    },
    'payment': {
        'list': SIGNED_IN,
        'retrieve': SIGNED_IN,
        'create': SIGNED_IN,
        'process': FINANCE,
    },
    'refund': {
        'list': FINANCE,
        'retrieve': FINANCE,
        'create': FINANCE,
        'process': MANAGEMENT,
    },
    'review': {
        'list': EVERYONE,
        'retrieve': EVERYONE,
        'stats': EVERYONE,
        'create': frozenset({GUEST}),
        'helpful': SIGNED_IN,
        'moderate': MANAGEMENT,
        'destroy': MANAGEMENT,
    },
    'user': {
        'me': SIGNED_IN,
        'list': MANAGEMENT,
        'retrieve': MANAGEMENT,
        'create': frozenset({ADMIN}),
        'update': frozenset({ADMIN}),
        'destroy': frozenset({ADMIN}),
    },
    'settings': {
        'retrieve': MANAGEMENT,
        'update': frozenset({ADMIN}),
    },
    'dashboard': {
        'stats': SIGNED_IN,
    },
}


def is_allowed(role, action, resource):
    """Return True when ``role`` may perform ``action`` on ``resource``.

    Unknown resources and actions are denied.
    """
    action = ACTION_ALIASES.get(action, action)
    allowed_roles = POLICY.get(resource, {}).get(action)
    if allowed_roles is None:
        return False
    return role in allowed_roles


def role_of(user):
    if user is None or not user.is_authenticated:
        return ANONYMOUS
    if user.is_superuser:
        return ADMIN
    return str(user.role)


def sees_everything(user):
    """Whether listings for ``user`` are left unscoped (everyone but guests)."""
    role = role_of(user)
    return role is not ANONYMOUS and role != GUEST
