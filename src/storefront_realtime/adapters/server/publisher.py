"""Domain event publisher.

Entry point for backend write paths: after a product, order, wallet (and
so on) mutation commits, the write path calls the matching ``publish_*``
method and the publisher fans the change out to the right audiences.

Fan-out rules per domain:

    product       all users ``product:<a>``, admins ``product:<a>_ack``
    order         admins ``order:<a>``, owning user ``order:<a>_update``
    notification  owning user, or all users when unaddressed
    wallet        owning user ``wallet:<a>``, admins ``wallet:<a>_admin``
    transaction   owning user ``transaction:<a>``, admins ``transaction:<a>_admin``
    cart          owning user only
    user          admins only
    review        all users ``review:<a>``, admins ``review:<a>_admin``
    faq           all users
    category      all users

The owning user is taken from the payload's ``userId`` field.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import structlog

from storefront_realtime.adapters.server.hub import Audience
from storefront_realtime.domain.model.events import Envelope, EventKind

if TYPE_CHECKING:
    from storefront_realtime.adapters.server.hub import RealtimeHub

logger = structlog.get_logger(__name__)


def _owner(data: dict[str, Any]) -> str | None:
    user_id = data.get("userId")
    return str(user_id) if user_id else None


class DomainEventPublisher:
    """Fans domain mutations out to admins and users through the hub.

    Every ``publish_*`` method takes the action name (``created``,
    ``updated``, ``status_updated`` ...) and the mutated document, and
    returns the number of sessions the change was delivered to.
    """

    def __init__(self, hub: RealtimeHub) -> None:
        self._hub = hub
        self._domains: dict[str, Callable[[str, dict[str, Any]], Awaitable[int]]] = {
            "product": self.publish_product,
            "order": self.publish_order,
            "notification": self.publish_notification,
            "wallet": self.publish_wallet,
            "transaction": self.publish_transaction,
            "cart": self.publish_cart,
            "user": self.publish_user,
            "review": self.publish_review,
            "faq": self.publish_faq,
            "category": self.publish_category,
        }

    @property
    def domains(self) -> list[str]:
        return sorted(self._domains)

    async def publish(self, domain: str, action: str, data: dict[str, Any]) -> int:
        """Publish by domain name.

        Raises:
            ValueError: If the domain is unknown
        """
        handler = self._domains.get(domain)
        if handler is None:
            raise ValueError(f"Unknown domain: {domain}")
        return await handler(action, data)

    async def _to(self, type_: str, data: dict[str, Any], audience: Audience) -> int:
        envelope = Envelope.create(type_, data)
        if not envelope.is_recognized:
            logger.debug("Publishing event outside the known taxonomy", event_type=type_)
        return await self._hub.broadcast(envelope, audience)

    async def _to_owner(self, type_: str, data: dict[str, Any]) -> int:
        owner = _owner(data)
        if owner is None:
            return 0
        return await self._to(type_, data, Audience.user(owner))

    async def publish_product(self, action: str, data: dict[str, Any]) -> int:
        delivered = await self._to(f"product:{action}", data, Audience.all_users())
        delivered += await self._to(f"product:{action}_ack", data, Audience.all_admins())
        return delivered

    async def publish_order(self, action: str, data: dict[str, Any]) -> int:
        delivered = await self._to(f"order:{action}", data, Audience.all_admins())
        delivered += await self._to_owner(f"order:{action}_update", data)
        return delivered

    async def publish_order_status(self, order_id: str, user_id: str, status: str, message: str) -> int:
        """Tell one user their order changed status."""
        return await self._hub.send_to_user(
            user_id,
            Envelope.create(
                EventKind.ORDER_STATUS_UPDATED,
                {"orderId": order_id, "userId": user_id, "status": status, "message": message},
            ),
        )

    async def publish_notification(self, action: str, data: dict[str, Any]) -> int:
        type_ = f"notification:{action}"
        if _owner(data):
            return await self._to_owner(type_, data)
        return await self._to(type_, data, Audience.all_users())

    async def publish_wallet(self, action: str, data: dict[str, Any]) -> int:
        delivered = await self._to_owner(f"wallet:{action}", data)
        delivered += await self._to(f"wallet:{action}_admin", data, Audience.all_admins())
        return delivered

    async def publish_transaction(self, action: str, data: dict[str, Any]) -> int:
        delivered = await self._to_owner(f"transaction:{action}", data)
        delivered += await self._to(f"transaction:{action}_admin", data, Audience.all_admins())
        return delivered

    async def publish_cart(self, action: str, data: dict[str, Any]) -> int:
        return await self._to_owner(f"cart:{action}", data)

    async def publish_user(self, action: str, data: dict[str, Any]) -> int:
        return await self._to(f"user:{action}", data, Audience.all_admins())

    async def publish_review(self, action: str, data: dict[str, Any]) -> int:
        delivered = await self._to(f"review:{action}", data, Audience.all_users())
        delivered += await self._to(f"review:{action}_admin", data, Audience.all_admins())
        return delivered

    async def publish_faq(self, action: str, data: dict[str, Any]) -> int:
        return await self._to(f"faq:{action}", data, Audience.all_users())

    async def publish_category(self, action: str, data: dict[str, Any]) -> int:
        return await self._to(f"category:{action}", data, Audience.all_users())

    async def notify_room(self, room: str, type_: EventKind | str, data: dict[str, Any]) -> int:
        """Deliver to an opt-in room such as ``notifications_<type>``."""
        return await self._to(type_.value if isinstance(type_, EventKind) else type_, data, Audience.room(room))
