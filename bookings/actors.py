from collections import namedtuple


ROLE_CUSTOMER = 'customer'
ROLE_CHEF = 'chef'
ROLE_ADMIN = 'admin'
ROLES = (ROLE_CUSTOMER, ROLE_CHEF, ROLE_ADMIN)

Actor = namedtuple('Actor', ['actor_id', 'role'])


def actor_from_request(request):
    """
    Build the caller's identity from the headers set by the upstream auth layer.
    Returns None when the context is missing or the role is unknown.
    """
    actor_id = request.headers.get('X-Actor-Id')
    role = request.headers.get('X-Actor-Role')
    if not actor_id or role not in ROLES:
        return None
    return Actor(actor_id=actor_id, role=role)
