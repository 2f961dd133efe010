"""Shared plumbing for the lifecycle managers."""

from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

import pydantic
from pydantic import BaseModel

from insurance_core.exceptions import NotFound, ValidationError
from insurance_core.models.policy import Policy
from insurance_core.notifications import NotificationDispatcher, dispatch
from insurance_core.services.coordinator import ConsistencyCoordinator

Clock = Callable[[], datetime]
M = TypeVar("M", bound=BaseModel)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def validate_input(model: type[M], data: dict[str, Any]) -> M:
    """Build an input model, reporting pydantic errors as engine ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__} input",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


class LifecycleService:
    """Base for managers: coordinator, clock and notification dispatcher."""

    def __init__(
        self,
        coordinator: ConsistencyCoordinator,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ):
        self._coordinator = coordinator
        self._policies = coordinator.policies
        self._claims = coordinator.claims
        self._payments = coordinator.payments
        self._dispatcher = dispatcher
        self._clock = clock or utc_now

    def _now(self) -> datetime:
        return self._clock()

    def _notify(self, event: str, recipient_id: str | None, payload: dict[str, Any]) -> None:
        dispatch(self._dispatcher, event, recipient_id, payload)

    def _get_policy(self, policy_id: str) -> Policy:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise NotFound(f"Policy not found: {policy_id}", entity="policy", entity_id=policy_id)
        return policy
