# Models package — import all models here so Alembic can discover them.

from app.models.org import Org  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.customer import Customer, Company  # noqa: F401
from app.models.membership import Membership, MembershipSuspension  # noqa: F401
from app.models.transaction import Transaction  # noqa: F401
from app.models.stripe_event import StripeEvent  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
