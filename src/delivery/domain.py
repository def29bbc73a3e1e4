"""Delivery bounded context — provider dispatch and status synchronization.

Hands confirmed orders to third-party parcel-delivery providers and keeps
each order's status in step with the provider's ground truth until the
parcel is delivered, returned, or cancelled. Uses CQRS: providers own the
tracking state, the Order aggregate keeps an append-only record of what
they reported.
"""

from protean.domain import Domain

from delivery.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

delivery = Domain(name="delivery")
