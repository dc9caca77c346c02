# stickershop/handlers/order_handlers.py
from fastapi import APIRouter, Depends
from ..models.order import TrackingUpdate
from ..models.proof import ProofInput, ProofResponse
from ..models.result import Result
from .base_handler import get_services, require_admin

router = APIRouter(prefix="/api/orders", tags=["orders"])

@router.get("/{order_id}")
async def get_order(order_id: int, services=Depends(get_services)):
    return await services.orders.get_order(order_id)

@router.post("/{order_id}/proofs", dependencies=[Depends(require_admin)])
async def add_proof(order_id: int, data: ProofInput, services=Depends(get_services)):
    return Result.ok(await services.orders.add_proof(order_id, data))

@router.post("/{order_id}/proofs/send", dependencies=[Depends(require_admin)])
async def send_proofs(order_id: int, services=Depends(get_services)):
    return Result.ok(await services.orders.send_proofs(order_id))

@router.put("/{order_id}/proofs/{proof_id}", dependencies=[Depends(require_admin)])
async def replace_proof(order_id: int, proof_id: str, data: ProofInput,
                        services=Depends(get_services)):
    return Result.ok(await services.orders.replace_proof(order_id, proof_id, data))

@router.post("/{order_id}/proofs/{proof_id}/respond")
async def respond_to_proof(order_id: int, proof_id: str, data: ProofResponse,
                           services=Depends(get_services)):
    order = await services.orders.respond_to_proof(
        order_id, proof_id, data.approved, data.customer_notes
    )
    return Result.ok(order)

@router.post("/{order_id}/tracking", dependencies=[Depends(require_admin)])
async def update_tracking(order_id: int, data: TrackingUpdate, services=Depends(get_services)):
    return Result.ok(await services.orders.update_tracking(order_id, data))
