from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from datetime import datetime
from servicehub.db.db_models import Budget
from servicehub.models.user import UserIdentity
from servicehub.services import payloads


class BudgetRequestCreate(BaseModel):
    professional_id: str
    service_id: str


class BudgetPriceSet(BaseModel):
    chat_id: str
    service_id: str
    price: Decimal
    description: Optional[str] = None


class BudgetProjection(BaseModel):
    """Budget as shown on a chat list entry."""
    id: str
    status: str
    price: Optional[str] = None
    description: Optional[str] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_budget(cls, budget: Budget) -> "BudgetProjection":
        return cls(
            id=budget.id,
            status=payloads.effective_budget_status(budget),
            price=payloads.format_price(budget.price),
            description=budget.description,
            expires_at=budget.expires_at,
        )


class BudgetResponse(BudgetProjection):
    chat_id: str
    service_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_budget(cls, budget: Budget) -> "BudgetResponse":
        return cls(
            id=budget.id,
            chat_id=budget.chat_id,
            service_id=budget.service_id,
            status=payloads.effective_budget_status(budget),
            price=payloads.format_price(budget.price),
            description=budget.description,
            expires_at=budget.expires_at,
            created_at=budget.created_at,
            updated_at=budget.updated_at,
        )


class BudgetChatInfo(BaseModel):
    id: str
    client_id: str
    professional_id: str
    service_id: Optional[str] = None
    service_title: Optional[str] = None
    client: Optional[UserIdentity] = None
    professional: Optional[UserIdentity] = None


class BudgetDetailResponse(BudgetResponse):
    chat: Optional[BudgetChatInfo] = None

    @classmethod
    def from_budget(cls, budget: Budget) -> "BudgetDetailResponse":
        """Expects ``budget.chat`` with its client, professional and service loaded."""
        base = BudgetResponse.from_budget(budget).model_dump()
        chat = budget.chat
        return cls(
            **base,
            chat=BudgetChatInfo(
                id=chat.id,
                client_id=chat.client_id,
                professional_id=chat.professional_id,
                service_id=chat.service_id,
                service_title=chat.service.title if chat.service else None,
                client=UserIdentity.model_validate(chat.client) if chat.client else None,
                professional=(
                    UserIdentity.model_validate(chat.professional) if chat.professional else None
                ),
            ),
        )
