"""Stock Transfer API endpoints."""
from fastapi import APIRouter, status

from app.api.deps import DB, CurrentUserId
from app.schemas.inventory import MovementResponse
from app.schemas.stock_transfer import StockTransferCreate, StockTransferResponse
from app.services.transfer_service import TransferService


router = APIRouter(tags=["Stock Transfers"])


@router.post(
    "",
    response_model=StockTransferResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_transfer(
    data: StockTransferCreate,
    db: DB,
    current_user_id: CurrentUserId,
):
    """
    Move stock from one branch to another.

    Writes a TRANSFER_OUT on the source and a TRANSFER_IN on the destination
    in one transaction.
    """
    service = TransferService(db)
    result = await service.transfer(
        item_id=data.item_id,
        from_branch_id=data.from_branch_id,
        to_branch_id=data.to_branch_id,
        quantity=data.quantity,
        unit_id=data.unit_id,
        notes=data.notes,
        created_by=current_user_id,
    )
    return StockTransferResponse(
        transfer_group_id=result["transfer_group_id"],
        out=MovementResponse.model_validate(result["out"]),
        in_=MovementResponse.model_validate(result["in"]),
    )
