from typing import Any, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from servicehub.api import deps
from servicehub.models.budget import (
    BudgetRequestCreate, BudgetPriceSet, BudgetResponse, BudgetDetailResponse,
)
from servicehub.models.user import CurrentUser
from servicehub.services.budget_service import BudgetService

router = APIRouter()


def _ensure_participant(client_id: str, professional_id: str, user: CurrentUser) -> None:
    if user.id not in (client_id, professional_id):
        raise HTTPException(status_code=403, detail="Not authorized")


async def _ensure_lookup_access(
    budgets: BudgetService, service_id: str, client_id: str, user: CurrentUser
) -> None:
    """Lookups are open to the client they name and to the service's professional."""
    if user.id == client_id:
        return
    _ensure_participant(client_id, await budgets.service_owner_id(service_id), user)


# ─── Negotiation ─────────────────────────────────────────────────────

@router.post("/budgets", response_model=BudgetResponse)
async def set_budget_price(
    price_in: BudgetPriceSet,
    response: Response,
    current_user: CurrentUser = Depends(deps.get_current_professional),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    """Professional defines the price of the chat's budget (created if missing)."""
    budget, created = await budgets.set_price(
        price_in.chat_id,
        price_in.service_id,
        price_in.price,
        price_in.description,
        professional_id=current_user.id,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return BudgetResponse.from_budget(budget)


@router.post(
    "/budgets/request",
    response_model=BudgetDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_budget(
    request_in: BudgetRequestCreate,
    current_user: CurrentUser = Depends(deps.get_current_client),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    """Client asks a professional to quote a service."""
    budget = await budgets.request_budget(
        current_user.id, request_in.professional_id, request_in.service_id
    )
    return BudgetDetailResponse.from_budget(budget)


@router.patch("/budgets/{budget_id}/accept", response_model=BudgetResponse)
async def accept_budget(
    budget_id: str,
    current_user: CurrentUser = Depends(deps.get_current_client),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    budget = await budgets.accept_budget(budget_id, client_id=current_user.id)
    return BudgetResponse.from_budget(budget)


@router.patch("/budgets/{budget_id}/reject", response_model=BudgetResponse)
async def reject_budget(
    budget_id: str,
    current_user: CurrentUser = Depends(deps.get_current_client),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    budget = await budgets.reject_budget(budget_id, client_id=current_user.id)
    return BudgetResponse.from_budget(budget)


@router.patch("/budgets/{budget_id}/cancel", response_model=BudgetResponse)
async def cancel_budget(
    budget_id: str,
    current_user: CurrentUser = Depends(deps.get_current_client),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    """Client discards the current quote to ask for a new one."""
    budget = await budgets.cancel_budget(budget_id, client_id=current_user.id)
    return BudgetResponse.from_budget(budget)


# ─── Lookups ─────────────────────────────────────────────────────────

@router.get("/chats/{chat_id}/budgets", response_model=List[BudgetResponse])
async def list_chat_budgets(
    chat_id: str,
    budget_status: Optional[str] = Query(default=None, alias="status"),
    current_user: CurrentUser = Depends(deps.get_current_user),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    chat = await budgets.chats.load_chat(chat_id)
    _ensure_participant(chat.client_id, chat.professional_id, current_user)
    return [BudgetResponse.from_budget(b) for b in await budgets.list_chat_budgets(chat_id, budget_status)]


@router.get("/budgets/{budget_id}", response_model=BudgetDetailResponse)
async def get_budget(
    budget_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    budget = await budgets.get_budget(budget_id)
    _ensure_participant(budget.chat.client_id, budget.chat.professional_id, current_user)
    return BudgetDetailResponse.from_budget(budget)


@router.get("/budgets/service/{service_id}/client/{client_id}", response_model=BudgetResponse)
async def get_accepted_budget(
    service_id: str,
    client_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    await _ensure_lookup_access(budgets, service_id, client_id, current_user)
    return BudgetResponse.from_budget(await budgets.find_accepted(service_id, client_id))


@router.get(
    "/budgets/service/{service_id}/client/{client_id}/pending",
    response_model=BudgetResponse,
)
async def get_pending_budget(
    service_id: str,
    client_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    await _ensure_lookup_access(budgets, service_id, client_id, current_user)
    return BudgetResponse.from_budget(await budgets.find_pending(service_id, client_id))


@router.get(
    "/budgets/service/{service_id}/client/{client_id}/with-price",
    response_model=BudgetResponse,
)
async def get_quoted_budget(
    service_id: str,
    client_id: str,
    current_user: CurrentUser = Depends(deps.get_current_user),
    budgets: BudgetService = Depends(deps.get_budget_service),
) -> Any:
    await _ensure_lookup_access(budgets, service_id, client_id, current_user)
    return BudgetResponse.from_budget(await budgets.find_quoted(service_id, client_id))
