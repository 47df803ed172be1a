# Models package: import all models here so Alembic can discover them.

from storefront.models.order import Order, OrderItem  # noqa: F401
from storefront.models.portal_token import PortalToken  # noqa: F401
