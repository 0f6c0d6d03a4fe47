# Import every model so relationship() targets resolve regardless of import order.
from taskcollab.models.session import AuthSession  # noqa: F401
from taskcollab.models.user import User  # noqa: F401
