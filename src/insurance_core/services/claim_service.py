"""Claim lifecycle: filing, the forward-only status graph, assignment and investigation.

Every accepted status change appends exactly one StatusHistoryEntry in the
same transaction as the claim write. Filing a claim also adds the claim to
the policy's claims history, through the consistency coordinator.
"""

import uuid
from typing import Any, Iterable, Optional

from insurance_core.db.constants import (
    CLAIM_APPROVED,
    CLAIM_ASSIGNING_STATUSES,
    CLAIM_CANCELLED,
    CLAIM_DECISION_STATUSES,
    CLAIM_INVESTIGATING,
    CLAIM_REJECTED,
    CLAIM_STATUSES,
    CLAIM_SUBMITTED,
    CLAIM_TERMINAL_STATUSES,
    CLAIM_TRANSITIONS,
    CLAIM_UNDER_REVIEW,
    POLICY_ACTIVE,
    can_transition,
)
from insurance_core.db.repository import generate_id
from insurance_core.exceptions import (
    AmountExceedsCoverage,
    AuthorizationError,
    IncidentOutsideCoverage,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    PolicyNotActive,
    ValidationError,
)
from insurance_core.models.claim import (
    Claim,
    ClaimCreate,
    ClaimDocument,
    ClaimPriority,
    ClaimUpdate,
    StatusHistoryEntry,
)
from insurance_core.models.common import Actor, Role
from insurance_core.models.policy import Policy
from insurance_core.notifications import CLAIM_ASSIGNED, CLAIM_STATUS_CHANGED
from insurance_core.notifications import CLAIM_SUBMITTED as CLAIM_SUBMITTED_EVENT
from insurance_core.observability import entity_context, get_logger
from insurance_core.services.base import LifecycleService, validate_input
from insurance_core.utils.sanitization import (
    sanitize_comment,
    sanitize_description,
    sanitize_list,
    sanitize_reason,
    sanitize_text,
)

logger = get_logger(__name__, entity_type="claim")

# Statuses from which a claim may be (re)assigned
_ASSIGNABLE_STATUSES = (CLAIM_SUBMITTED, CLAIM_UNDER_REVIEW, CLAIM_INVESTIGATING)


def generate_claim_number(year: int) -> str:
    """CLM-YYYY-XXXXXXXX with 8 random upper-case hex chars."""
    return f"CLM-{year}-{uuid.uuid4().hex[:8].upper()}"


class ClaimService(LifecycleService):
    """Owns Claim state and its append-only status history."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_claim(self, claim_id: str) -> Claim:
        claim = self._claims.get(claim_id)
        if claim is None:
            raise NotFound(f"Claim not found: {claim_id}", entity="claim", entity_id=claim_id)
        return claim

    def get_status_history(self, claim_id: str) -> list[StatusHistoryEntry]:
        """Audit trail in the order the entries were appended."""
        self.get_claim(claim_id)
        return self._claims.get_status_history(claim_id)

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    def create_claim(self, actor: Actor, **fields: Any) -> Claim:
        """File a claim against an active policy.

        Raises:
            PolicyNotActive: the policy is not active
            AmountExceedsCoverage: claim_amount is above the policy coverage
            IncidentOutsideCoverage: incident_date is outside [start_date, end_date]
            AuthorizationError: a customer filing against someone else's policy
        """
        data = validate_input(ClaimCreate, fields)
        claim = self._coordinator.run_with_retry(self._create_claim, actor, data)
        self._notify(
            CLAIM_SUBMITTED_EVENT,
            claim.customer_id,
            {"claim_id": claim.id, "claim_number": claim.claim_number, "status": claim.status},
        )
        return claim

    def _create_claim(self, actor: Actor, data: ClaimCreate) -> Claim:
        policy = self._get_policy(data.policy_id)
        if actor.is_customer and policy.customer_id != actor.id:
            raise AuthorizationError(
                "Customers can only file claims on their own policies", policy_id=policy.id
            )
        if policy.status != POLICY_ACTIVE:
            raise PolicyNotActive(
                "Claims can only be filed against active policies",
                policy_id=policy.id,
                status=policy.status,
            )
        self._check_amount(policy, data.claim_amount)

        now = self._now()
        if data.incident_date > now.date():
            raise ValidationError(
                "Incident date cannot be in the future", incident_date=str(data.incident_date)
            )
        if not policy.covers(data.incident_date):
            raise IncidentOutsideCoverage(
                "Incident date must be within the policy coverage period",
                incident_date=str(data.incident_date),
                start_date=str(policy.start_date),
                end_date=str(policy.end_date),
            )

        priority = data.priority if actor.is_staff and data.priority else ClaimPriority.MEDIUM
        claim = Claim(
            id=generate_id(),
            claim_number=generate_claim_number(now.year),
            policy_id=policy.id,
            customer_id=actor.id if actor.is_customer else policy.customer_id,
            claim_type=data.claim_type,
            incident_date=data.incident_date,
            claim_amount=round(data.claim_amount, 2),
            description=sanitize_description(data.description),
            incident_location=sanitize_text(data.incident_location, 255),
            witnesses=sanitize_list(data.witnesses),
            priority=priority,
            status=CLAIM_SUBMITTED,
            status_history=[
                StatusHistoryEntry(
                    status=CLAIM_SUBMITTED,
                    actor_id=actor.id,
                    timestamp=now,
                    comment="Claim submitted",
                )
            ],
            documents=[self._stamp_document(d) for d in data.documents],
            version=1,
            created_at=now,
            updated_at=now,
        )
        return self._coordinator.create_claim(claim, policy, now)

    # ------------------------------------------------------------------
    # Status graph
    # ------------------------------------------------------------------

    def transition_status(
        self,
        actor: Actor,
        claim_id: str,
        new_status: str,
        comment: Optional[str] = None,
        approved_amount: Optional[float] = None,
        rejection_reason: Optional[str] = None,
    ) -> Claim:
        """Move a claim one step forward and append one history entry.

        Only admins may approve or reject. Approval needs an explicit
        approved_amount in (0, claim_amount].
        """
        if new_status not in CLAIM_STATUSES:
            raise ValidationError(f"Invalid claim status: {new_status}", allowed=list(CLAIM_STATUSES))
        claim = self._coordinator.run_with_retry(
            self._transition_status,
            actor,
            claim_id,
            new_status,
            sanitize_comment(comment),
            approved_amount,
            sanitize_reason(rejection_reason),
        )
        self._notify(
            CLAIM_STATUS_CHANGED,
            claim.customer_id,
            {"claim_id": claim.id, "claim_number": claim.claim_number, "status": claim.status},
        )
        return claim

    def _transition_status(
        self,
        actor: Actor,
        claim_id: str,
        new_status: str,
        comment: Optional[str],
        approved_amount: Optional[float],
        rejection_reason: Optional[str],
    ) -> Claim:
        claim = self.get_claim(claim_id)
        self._authorize_transition(actor, claim, new_status)
        self._require_transition(claim, new_status)

        update: dict[str, Any] = {"status": new_status}
        if new_status == CLAIM_APPROVED:
            if approved_amount is None:
                raise ValidationError("approved_amount is required to approve a claim")
            if approved_amount <= 0:
                raise ValidationError(
                    "approved_amount must be positive", approved_amount=approved_amount
                )
            if approved_amount > claim.claim_amount:
                raise InvariantViolation(
                    "Approved amount cannot exceed the claimed amount",
                    approved_amount=approved_amount,
                    claim_amount=claim.claim_amount,
                )
            update["approved_amount"] = round(approved_amount, 2)
        elif new_status == CLAIM_REJECTED:
            update["rejection_reason"] = rejection_reason
        if new_status in CLAIM_ASSIGNING_STATUSES:
            update["assigned_to"] = actor.id

        entry = StatusHistoryEntry(
            status=new_status,
            actor_id=actor.id,
            timestamp=self._now(),
            comment=comment,
            reason=rejection_reason if new_status == CLAIM_REJECTED else None,
        )
        return self._save(actor, claim, update, entry, "claim_status_changed")

    def _authorize_transition(self, actor: Actor, claim: Claim, new_status: str) -> None:
        if actor.is_customer:
            if claim.customer_id != actor.id or new_status != CLAIM_CANCELLED:
                raise AuthorizationError(
                    f"Customers cannot move a claim to {new_status}", claim_id=claim.id
                )
            return
        if new_status in CLAIM_DECISION_STATUSES and not actor.is_admin:
            raise AuthorizationError(
                f"Only admins can move a claim to {new_status}", claim_id=claim.id
            )
        if actor.role == Role.AGENT:
            if new_status == CLAIM_CANCELLED:
                raise AuthorizationError("Agents cannot cancel claims", claim_id=claim.id)
            self._require_agent_access(actor, claim)

    # ------------------------------------------------------------------
    # Assignment and investigation
    # ------------------------------------------------------------------

    def assign(self, actor: Actor, claim_id: str, assignee: Actor) -> Claim:
        """Hand the claim to a staff member. A submitted claim moves to under_review."""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can assign claims")
        if not assignee.is_staff:
            raise ValidationError(
                "Claims can only be assigned to agents or admins", assignee_id=assignee.id
            )
        claim = self._coordinator.run_with_retry(self._assign, actor, claim_id, assignee)
        self._notify(
            CLAIM_ASSIGNED,
            assignee.id,
            {"claim_id": claim.id, "claim_number": claim.claim_number, "status": claim.status},
        )
        return claim

    def _assign(self, actor: Actor, claim_id: str, assignee: Actor) -> Claim:
        claim = self.get_claim(claim_id)
        if claim.status not in _ASSIGNABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot assign a claim in status {claim.status}", status=claim.status
            )
        status = CLAIM_UNDER_REVIEW if claim.status == CLAIM_SUBMITTED else claim.status
        entry = StatusHistoryEntry(
            status=status,
            actor_id=actor.id,
            timestamp=self._now(),
            comment=f"Assigned to {assignee.id}",
        )
        return self._save(
            actor,
            claim,
            {"status": status, "assigned_to": assignee.id},
            entry,
            "claim_assigned",
        )

    def add_investigation_details(
        self,
        actor: Actor,
        claim_id: str,
        findings: Optional[str] = None,
        recommendation: Optional[str] = None,
        notes: Optional[Iterable[str]] = None,
    ) -> Claim:
        """Record investigation progress; the claim is (re)entered into investigating.

        The first call stamps investigator and start date; later calls only
        update findings/recommendation and append notes.
        """
        return self._coordinator.run_with_retry(
            self._add_investigation_details,
            actor,
            claim_id,
            sanitize_comment(findings),
            sanitize_comment(recommendation),
            sanitize_list(notes, 2000),
        )

    def _add_investigation_details(
        self,
        actor: Actor,
        claim_id: str,
        findings: Optional[str],
        recommendation: Optional[str],
        notes: list[str],
    ) -> Claim:
        claim = self.get_claim(claim_id)
        investigation = claim.investigation
        if not actor.is_admin:
            if actor.role != Role.AGENT or actor.id not in (
                claim.assigned_to,
                investigation.investigator_id,
            ):
                raise AuthorizationError(
                    "Only the assigned investigator or an admin can add investigation details",
                    claim_id=claim.id,
                )
        if claim.status != CLAIM_INVESTIGATING:
            self._require_transition(claim, CLAIM_INVESTIGATING)

        now = self._now()
        changes: dict[str, Any] = {"notes": [*investigation.notes, *notes]}
        if investigation.investigator_id is None:
            changes["investigator_id"] = actor.id
            changes["start_date"] = now
        if findings is not None:
            changes["findings"] = findings
        if recommendation is not None:
            changes["recommendation"] = recommendation

        update: dict[str, Any] = {
            "status": CLAIM_INVESTIGATING,
            "investigation": investigation.model_copy(update=changes),
        }
        if claim.assigned_to is None:
            update["assigned_to"] = actor.id
        entry = StatusHistoryEntry(
            status=CLAIM_INVESTIGATING,
            actor_id=actor.id,
            timestamp=now,
            comment="Investigation details updated",
        )
        return self._save(actor, claim, update, entry, "claim_investigation_updated")

    # ------------------------------------------------------------------
    # Field edits and documents
    # ------------------------------------------------------------------

    def update_fields(self, actor: Actor, claim_id: str, **fields: Any) -> Claim:
        """Edit a claim while it is still submitted."""
        changes = validate_input(ClaimUpdate, fields)
        if actor.is_customer and changes.priority is not None:
            raise AuthorizationError("Customers cannot set claim priority")
        return self._coordinator.run_with_retry(self._update_fields, actor, claim_id, changes)

    def _update_fields(self, actor: Actor, claim_id: str, changes: ClaimUpdate) -> Claim:
        claim = self.get_claim(claim_id)
        self._require_access(actor, claim)
        if claim.status != CLAIM_SUBMITTED:
            raise InvalidTransition(
                "Claims can only be edited while submitted", status=claim.status
            )

        update = changes.model_dump(exclude_none=True)
        if "claim_amount" in update:
            self._check_amount(self._get_policy(claim.policy_id), changes.claim_amount)
            update["claim_amount"] = round(changes.claim_amount, 2)
        if "description" in update:
            update["description"] = sanitize_description(update["description"])
        if "incident_location" in update:
            update["incident_location"] = sanitize_text(update["incident_location"], 255)
        if "witnesses" in update:
            update["witnesses"] = sanitize_list(update["witnesses"])
        if not update:
            return claim
        return self._save(actor, claim, update, None, "claim_updated")

    def append_documents(
        self, actor: Actor, claim_id: str, documents: Iterable[ClaimDocument | dict]
    ) -> Claim:
        """Attach document references. URLs are stored as given."""
        docs = [
            d if isinstance(d, ClaimDocument) else validate_input(ClaimDocument, d)
            for d in documents or ()
        ]
        if not docs:
            raise ValidationError("At least one document is required")
        return self._coordinator.run_with_retry(self._append_documents, actor, claim_id, docs)

    def _append_documents(self, actor: Actor, claim_id: str, docs: list[ClaimDocument]) -> Claim:
        claim = self.get_claim(claim_id)
        self._require_access(actor, claim)
        if claim.status in CLAIM_TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Cannot add documents to a {claim.status} claim", status=claim.status
            )
        documents = [*claim.documents, *(self._stamp_document(d) for d in docs)]
        return self._save(actor, claim, {"documents": documents}, None, "claim_documents_added")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _save(
        self,
        actor: Actor,
        claim: Claim,
        update: dict[str, Any],
        entry: Optional[StatusHistoryEntry],
        event: str,
    ) -> Claim:
        now = self._now()
        with entity_context("claim", claim.id, actor_id=actor.id):
            with self._coordinator.atomic() as conn:
                saved = self._claims.update(conn, claim.model_copy(update=update), now, entry)
            logger.log_event(
                event,
                old_status=claim.status,
                new_status=saved.status,
                version=saved.version,
            )
        return saved

    def _check_amount(self, policy: Policy, amount: float) -> None:
        if amount > policy.coverage_amount:
            raise AmountExceedsCoverage(
                "Claim amount exceeds policy coverage",
                claim_amount=amount,
                coverage_amount=policy.coverage_amount,
            )

    def _require_transition(self, claim: Claim, new_status: str) -> None:
        if not can_transition(CLAIM_TRANSITIONS, claim.status, new_status):
            raise InvalidTransition(
                f"Cannot move claim from {claim.status} to {new_status}",
                current=claim.status,
                target=new_status,
            )

    def _require_access(self, actor: Actor, claim: Claim) -> None:
        """Owner customer, admin, or an agent tied to the claim or its policy."""
        if actor.is_admin:
            return
        if actor.is_customer:
            if claim.customer_id != actor.id:
                raise AuthorizationError("Not authorized to access this claim", claim_id=claim.id)
            return
        self._require_agent_access(actor, claim)

    def _require_agent_access(self, actor: Actor, claim: Claim) -> None:
        if claim.assigned_to == actor.id:
            return
        policy = self._get_policy(claim.policy_id)
        if policy.agent_id != actor.id:
            raise AuthorizationError(
                "Agents can only act on claims they are assigned to or whose policy they manage",
                claim_id=claim.id,
            )

    def _stamp_document(self, document: ClaimDocument) -> ClaimDocument:
        if document.uploaded_at is not None:
            return document
        return document.model_copy(update={"uploaded_at": self._now()})
