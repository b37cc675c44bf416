from rest_framework import permissions

from .policy import is_allowed, role_of


class PolicyPermission(permissions.BasePermission):
    """
    Ask the policy table whether the caller's role may run the current
    view action on the view's ``policy_resource``.

    Viewsets name their resource with ``policy_resource``; plain API views
    can set ``policy_action`` as well, otherwise the action is derived from
    the HTTP method.
    """

    METHOD_ACTIONS = {
        'GET': 'retrieve',
        'HEAD': 'retrieve',
        'OPTIONS': 'retrieve',
        'POST': 'create',
        'PUT': 'update',
        'PATCH': 'update',
        'DELETE': 'destroy',
    }

    def has_permission(self, request, view):
        resource = getattr(view, 'policy_resource', None)
        if resource is None:
            return False
        action = getattr(view, 'action', None) or getattr(view, 'policy_action', None)
        if action is None:
            action = self.METHOD_ACTIONS.get(request.method)
        return is_allowed(role_of(request.user), action, resource)
