"""
Budget negotiation engine.

A chat owns at most one budget (unique ``budgets.chat_id``); every request or
price change updates that row in place. Status moves through::

    (none) --request--> PENDING
    PENDING --set_price--> ACCEPTED (or QUOTED, see BUDGET_PRICE_STATUS)
    PENDING|QUOTED --accept--> ACCEPTED   (EXPIRED once expires_at passed)
    PENDING|QUOTED --reject--> REJECTED
    any --cancel--> REJECTED

Transitions are conditional updates on the current status so two racing
responses cannot both win. Expiry is only written when someone tries to
accept; read paths report lapsed budgets as EXPIRED without persisting it.
"""
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from servicehub.core.config import settings
from servicehub.core.exceptions import (
    BudgetExpiredException, ConflictException, ForbiddenException,
    NotFoundException, ValidationException,
)
from servicehub.db.db_models import (
    Budget, BudgetStatus, Chat, Service, SENTINEL_PRICE, utcnow,
)
from servicehub.services import payloads
from servicehub.services.chat_service import ChatService
from servicehub.services.notification_service import (
    NotificationBus, SocketEvent, client_channel, professional_channel,
)

logger = logging.getLogger(__name__)

REQUEST_DESCRIPTION = "Budget request"
RESPONDABLE = payloads.RESPONDABLE_STATUSES


class BudgetService:
    def __init__(self, db: AsyncSession, bus: NotificationBus):
        self.db = db
        self.bus = bus
        self.chats = ChatService(db, bus)

    # ─── Loading ─────────────────────────────────────────────────────

    def _budget_query(self):
        return select(Budget).options(
            selectinload(Budget.chat).selectinload(Chat.client),
            selectinload(Budget.chat).selectinload(Chat.professional),
            selectinload(Budget.chat).selectinload(Chat.service),
        ).execution_options(populate_existing=True)

    async def get_budget(self, budget_id: str) -> Budget:
        result = await self.db.execute(self._budget_query().where(Budget.id == budget_id))
        budget = result.scalar_one_or_none()
        if budget is None:
            raise NotFoundException("Budget not found", details={"budget_id": budget_id})
        return budget

    async def _budget_for_chat(self, chat_id: str) -> Optional[Budget]:
        result = await self.db.execute(
            select(Budget)
            .where(Budget.chat_id == chat_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _expiry(self):
        return utcnow() + timedelta(days=settings.BUDGET_EXPIRY_DAYS)

    async def _upsert_for_chat(
        self, chat_id: str, create: Dict[str, Any], changes: Dict[str, Any]
    ) -> Tuple[Budget, bool]:
        """Create the chat's budget from ``create`` or apply ``changes`` to it.

        A concurrent insert for the same chat loses on the unique chat_id and
        falls back to updating the row that won.
        """
        budget = await self._budget_for_chat(chat_id)
        if budget is not None:
            for key, value in changes.items():
                setattr(budget, key, value)
            await self.db.commit()
            return budget, False

        budget = Budget(chat_id=chat_id, **create)
        self.db.add(budget)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            budget = await self._budget_for_chat(chat_id)
            if budget is None:
                raise
            logger.info("Budget for chat %s created concurrently, updating %s", chat_id, budget.id)
            for key, value in changes.items():
                setattr(budget, key, value)
            await self.db.commit()
            return budget, False
        return budget, True

    async def _transition(
        self,
        budget_id: str,
        target: BudgetStatus,
        allowed: Optional[Iterable[BudgetStatus]] = None,
    ) -> bool:
        stmt = update(Budget).where(Budget.id == budget_id)
        if allowed is not None:
            stmt = stmt.where(Budget.status.in_([s.value for s in allowed]))
        result = await self.db.execute(
            stmt.values(status=target.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        if result.rowcount == 1:
            logger.info("Budget %s -> %s", budget_id, target.value)
            return True
        return False

    # ─── Request (client) ────────────────────────────────────────────

    async def _open_request(
        self, client_id: str, professional_id: str, service_id: str
    ) -> Optional[Budget]:
        result = await self.db.execute(
            self._budget_query()
            .join(Budget.chat)
            .where(
                Budget.service_id == service_id,
                Budget.status == BudgetStatus.PENDING.value,
                Chat.client_id == client_id,
                Chat.professional_id == professional_id,
            )
            .order_by(Budget.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def request_budget(
        self, client_id: str, professional_id: str, service_id: str
    ) -> Budget:
        if not client_id or not professional_id or not service_id:
            raise ValidationException("client_id, professional_id and service_id are required")

        existing = await self._open_request(client_id, professional_id, service_id)
        if existing is not None and not payloads.is_lapsed(existing):
            logger.info("Budget request %s already pending, reusing", existing.id)
            return existing

        if await self.db.get(Service, service_id) is None:
            raise NotFoundException("Service not found", details={"service_id": service_id})

        chat, chat_created = await self.chats.get_or_create_chat_with_flag(
            client_id, professional_id, service_id
        )
        request_values = {
            "service_id": service_id,
            "status": BudgetStatus.PENDING.value,
            "price": SENTINEL_PRICE,
            "description": REQUEST_DESCRIPTION,
            "expires_at": self._expiry(),
        }
        chat_id = chat.id
        budget, _ = await self._upsert_for_chat(chat_id, request_values, request_values)
        await self.chats.touch(chat_id)
        logger.info("Budget %s requested on chat %s", budget.id, chat_id)

        budget = await self.get_budget(budget.id)
        channel = professional_channel(professional_id)
        if chat_created:
            await self.bus.publish(
                channel, SocketEvent.NEW_CHAT, payloads.chat_snapshot(budget.chat, budget)
            )
        else:
            await self.bus.publish(
                channel,
                SocketEvent.CHAT_LIST_UPDATE,
                {"chatId": chat_id, "budget": payloads.budget_projection(budget)},
            )
        return budget

    # ─── Pricing (professional) ──────────────────────────────────────

    async def set_price(
        self,
        chat_id: str,
        service_id: str,
        price: Any,
        description: Optional[str] = None,
        professional_id: Optional[str] = None,
    ) -> Tuple[Budget, bool]:
        """Price the chat's budget. Returns ``(budget, created)``."""
        if not chat_id or not service_id or price is None:
            raise ValidationException("chat_id, service_id and price are required")
        try:
            price = Decimal(str(price))
        except InvalidOperation:
            raise ValidationException("price must be a number")
        if not price.is_finite() or price <= 0:
            raise ValidationException("price must be greater than zero")

        chat = await self.chats.load_chat(chat_id)
        if professional_id is not None and professional_id != chat.professional_id:
            raise ForbiddenException("Only the chat's professional can price this budget")

        status = BudgetStatus(settings.BUDGET_PRICE_STATUS)
        changes = {"price": price, "description": description, "status": status.value}
        existing = chat.budget
        if existing is None or existing.expires_at is None or utcnow() > existing.expires_at:
            # A lapsed window would make the new quote unanswerable
            changes["expires_at"] = self._expiry()
        create = dict(changes, service_id=service_id, expires_at=self._expiry())

        budget, created = await self._upsert_for_chat(chat.id, create, changes)
        budget = await self.get_budget(budget.id)
        chat = budget.chat
        logger.info("Budget %s priced at %s (%s)", budget.id, price, status.value)

        await self.bus.publish(
            client_channel(chat.client_id),
            SocketEvent.NEW_BUDGET,
            {
                "budgetId": budget.id,
                "chatId": chat.id,
                "serviceId": service_id,
                "serviceName": chat.service.title if chat.service else "Service",
                "price": payloads.format_price(budget.price),
                "description": budget.description,
                "professionalName": chat.professional.full_name,
                "expiresAt": budget.expires_at,
            },
        )
        return budget, created

    # ─── Responses (client) ──────────────────────────────────────────

    def _check_client(self, budget: Budget, client_id: Optional[str]) -> None:
        if client_id is not None and client_id != budget.chat.client_id:
            raise ForbiddenException("Only the chat's client can respond to this budget")

    async def accept_budget(self, budget_id: str, client_id: Optional[str] = None) -> Budget:
        budget = await self.get_budget(budget_id)
        self._check_client(budget, client_id)
        if budget.status not in {s.value for s in RESPONDABLE}:
            raise ConflictException("Budget has already been answered",
                                    details={"status": budget.status})

        if budget.expires_at is not None and utcnow() > budget.expires_at:
            await self._transition(budget.id, BudgetStatus.EXPIRED, RESPONDABLE)
            raise BudgetExpiredException(budget.id)

        if not await self._transition(budget.id, BudgetStatus.ACCEPTED, RESPONDABLE):
            raise ConflictException("Budget has already been answered")

        budget = await self.get_budget(budget.id)
        await self.bus.publish(
            professional_channel(budget.chat.professional_id),
            SocketEvent.BUDGET_ACCEPTED,
            {
                "budgetId": budget.id,
                "chatId": budget.chat_id,
                "clientName": budget.chat.client.full_name,
            },
        )
        return budget

    async def reject_budget(self, budget_id: str, client_id: Optional[str] = None) -> Budget:
        budget = await self.get_budget(budget_id)
        self._check_client(budget, client_id)
        if budget.status not in {s.value for s in RESPONDABLE}:
            raise ConflictException("Budget has already been answered",
                                    details={"status": budget.status})

        if not await self._transition(budget.id, BudgetStatus.REJECTED, RESPONDABLE):
            raise ConflictException("Budget has already been answered")

        budget = await self.get_budget(budget.id)
        await self.bus.publish(
            professional_channel(budget.chat.professional_id),
            SocketEvent.BUDGET_REJECTED,
            {"budgetId": budget.id, "chatId": budget.chat_id},
        )
        return budget

    async def cancel_budget(self, budget_id: str, client_id: Optional[str] = None) -> Budget:
        """Client "redo": drop the current quote whatever its status."""
        budget = await self.get_budget(budget_id)
        self._check_client(budget, client_id)
        previous = budget.status

        await self._transition(budget.id, BudgetStatus.REJECTED)
        logger.info("Budget %s cancelled by client (was %s)", budget.id, previous)

        budget = await self.get_budget(budget.id)
        channel = professional_channel(budget.chat.professional_id)
        await self.bus.publish(
            channel,
            SocketEvent.BUDGET_CANCELLED,
            {"budgetId": budget.id, "chatId": budget.chat_id},
        )
        await self.bus.publish(
            channel,
            SocketEvent.CHAT_LIST_UPDATE,
            {"chatId": budget.chat_id, "budget": payloads.budget_projection(budget)},
        )
        return budget

    # ─── Read-only projections ───────────────────────────────────────

    async def service_owner_id(self, service_id: str) -> str:
        """User id of the professional offering ``service_id``."""
        service = await self.db.scalar(
            select(Service)
            .options(selectinload(Service.professional))
            .where(Service.id == service_id)
        )
        if service is None:
            raise NotFoundException("Service not found", details={"service_id": service_id})
        return service.professional.user_id

    async def list_chat_budgets(self, chat_id: str, status: Optional[str] = None) -> List[Budget]:
        query = select(Budget).where(Budget.chat_id == chat_id)
        if status:
            query = query.where(Budget.status == status)
        result = await self.db.execute(query.order_by(Budget.created_at.desc()))
        return list(result.scalars().all())

    async def _latest_for_client(self, service_id: str, client_id: str, *conditions) -> Optional[Budget]:
        result = await self.db.execute(
            select(Budget)
            .join(Budget.chat)
            .where(Budget.service_id == service_id, Chat.client_id == client_id, *conditions)
            .order_by(Budget.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _still_open(self):
        return or_(Budget.expires_at.is_(None), Budget.expires_at > utcnow())

    async def find_accepted(self, service_id: str, client_id: str) -> Budget:
        budget = await self._latest_for_client(
            service_id, client_id, Budget.status == BudgetStatus.ACCEPTED.value
        )
        if budget is None:
            raise NotFoundException("No accepted budget found")
        return budget

    async def find_pending(self, service_id: str, client_id: str) -> Budget:
        """Most recent request the professional has not priced yet."""
        budget = await self._latest_for_client(
            service_id,
            client_id,
            Budget.status == BudgetStatus.PENDING.value,
            Budget.price == SENTINEL_PRICE,
            self._still_open(),
        )
        if budget is None:
            raise NotFoundException("No pending budget found")
        return budget

    async def find_quoted(self, service_id: str, client_id: str) -> Budget:
        """Most recent priced budget still waiting for the client's answer."""
        budget = await self._latest_for_client(
            service_id,
            client_id,
            Budget.status == BudgetStatus.QUOTED.value,
            self._still_open(),
        )
        if budget is None:
            raise NotFoundException("No quoted budget found")
        return budget
