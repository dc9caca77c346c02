# stickershop/models/proof.py
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Set
from .base import ApiModel
from .result import ValidationFailed

class ProofStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"

# approved is terminal; changes_requested loops back through a replacement upload
ALLOWED_TRANSITIONS: Dict[ProofStatus, Set[ProofStatus]] = {
    ProofStatus.PENDING: {ProofStatus.SENT},
    ProofStatus.SENT: {ProofStatus.APPROVED, ProofStatus.CHANGES_REQUESTED},
    ProofStatus.CHANGES_REQUESTED: {ProofStatus.PENDING},
    ProofStatus.APPROVED: set(),
}

class Proof(ApiModel):
    """Design proof embedded in an order"""
    id: str
    status: ProofStatus = ProofStatus.PENDING
    proof_url: str
    proof_title: Optional[str] = None
    order_item_id: Optional[int] = None
    customer_notes: Optional[str] = None
    admin_notes: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    def transition(self, target: ProofStatus, at: datetime) -> "Proof":
        """Return a copy moved to `target`, refusing illegal moves"""
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise ValidationFailed(
                f"Proof {self.id} cannot move from {self.status.value} to {target.value}"
            )

        update = {"status": target}
        if target == ProofStatus.SENT:
            update["sent_at"] = at
        elif target in (ProofStatus.APPROVED, ProofStatus.CHANGES_REQUESTED):
            update["responded_at"] = at
        elif target == ProofStatus.PENDING:
            update["uploaded_at"] = at
            update["sent_at"] = None
            update["responded_at"] = None
        return self.model_copy(update=update)

class ProofInput(ApiModel):
    proof_url: str
    proof_title: Optional[str] = None
    order_item_id: Optional[int] = None
    admin_notes: Optional[str] = None

class ProofResponse(ApiModel):
    """Customer reply to a sent proof"""
    approved: bool
    customer_notes: Optional[str] = None
