"""CLI entry point for the insurance lifecycle engine.

Read-only operator commands over the configured database, plus the
premium schedule calculator.
"""

import json
import logging
import sys
from datetime import date
from pathlib import Path

# Ensure src is on path when run as script
if __name__ == "__main__" and str(Path(__file__).resolve().parent.parent) not in sys.path:
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

# Operator identity used for reads that need an actor
_CLI_ACTOR_ID = "cli"


def _setup_logging() -> None:
    """Configure logging for CLI usage."""
    from insurance_core.observability import get_logger

    get_logger("insurance_core")
    logging.getLogger("insurance_core").setLevel(
        logging.DEBUG if "--debug" in sys.argv else logging.INFO
    )


def _usage() -> str:
    return """Usage:
  insurance-core policy <policy_id>            Show a policy
  insurance-core claim <claim_id>              Show a claim
  insurance-core history <claim_id>            Show a claim's status history
  insurance-core payment <payment_id>          Show a payment
  insurance-core receipt <payment_id>          Show the receipt of a completed payment
  insurance-core next-due <YYYY-MM-DD> <freq>  Next premium due date (monthly, quarterly,
                                               semi-annual, annual)

Options:
  --debug                                      Enable debug logging
  --json                                       Use JSON log format
"""


def _engine():
    from insurance_core.services import LifecycleEngine

    return LifecycleEngine()


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _print_model(model) -> None:
    print(json.dumps(model.model_dump(mode="json"), indent=2))


def cmd_policy(policy_id: str) -> None:
    """Print a policy."""
    from insurance_core.exceptions import LifecycleError

    try:
        _print_model(_engine().policies.get_policy(policy_id))
    except LifecycleError as e:
        _fail(e.message)


def cmd_claim(claim_id: str) -> None:
    """Print a claim."""
    from insurance_core.exceptions import LifecycleError

    try:
        _print_model(_engine().claims.get_claim(claim_id))
    except LifecycleError as e:
        _fail(e.message)


def cmd_history(claim_id: str) -> None:
    """Print a claim's status history, oldest first."""
    from insurance_core.exceptions import LifecycleError

    try:
        history = _engine().claims.get_status_history(claim_id)
    except LifecycleError as e:
        _fail(e.message)
        return
    print(json.dumps([entry.model_dump(mode="json") for entry in history], indent=2))


def cmd_payment(payment_id: str) -> None:
    """Print a payment."""
    from insurance_core.exceptions import LifecycleError

    try:
        _print_model(_engine().payments.get_payment(payment_id))
    except LifecycleError as e:
        _fail(e.message)


def cmd_receipt(payment_id: str) -> None:
    """Print the receipt for a completed payment."""
    from insurance_core.exceptions import LifecycleError
    from insurance_core.models import Actor, Role

    operator = Actor(id=_CLI_ACTOR_ID, role=Role.ADMIN)
    try:
        _print_model(_engine().payments.issue_receipt(operator, payment_id))
    except LifecycleError as e:
        _fail(e.message)


def cmd_next_due(anchor: str, frequency: str) -> None:
    """Print the due date one premium period after ``anchor``."""
    from insurance_core.exceptions import LifecycleError
    from insurance_core.services.recurrence import next_due_date

    try:
        anchor_date = date.fromisoformat(anchor)
    except ValueError:
        _fail(f"Invalid date: {anchor} (expected YYYY-MM-DD)")
        return
    try:
        print(next_due_date(anchor_date, frequency).isoformat())
    except LifecycleError as e:
        _fail(e.message)


_ID_COMMANDS = {
    "policy": cmd_policy,
    "claim": cmd_claim,
    "history": cmd_history,
    "payment": cmd_payment,
    "receipt": cmd_receipt,
}


def main() -> None:
    """Run the CLI: policy, claim, history, payment, receipt or next-due."""
    import os

    # Handle global options
    argv = [arg for arg in sys.argv[1:] if not arg.startswith("--")]
    options = [arg for arg in sys.argv[1:] if arg.startswith("--")]

    if "--json" in options:
        os.environ["INSURANCE_CORE_LOG_FORMAT"] = "json"
    if "--debug" in options:
        os.environ["INSURANCE_CORE_LOG_LEVEL"] = "DEBUG"

    _setup_logging()

    if not argv:
        print(_usage(), file=sys.stderr)
        sys.exit(1)

    first = argv[0].lower()

    if first in _ID_COMMANDS:
        if len(argv) < 2:
            print(f"Error: {first} requires an id", file=sys.stderr)
            print(_usage(), file=sys.stderr)
            sys.exit(1)
        _ID_COMMANDS[first](argv[1])
        return

    if first == "next-due":
        if len(argv) < 3:
            print("Error: next-due requires <YYYY-MM-DD> <frequency>", file=sys.stderr)
            print(_usage(), file=sys.stderr)
            sys.exit(1)
        cmd_next_due(argv[1], argv[2])
        return

    print(f"Error: Unknown command: {first}", file=sys.stderr)
    print(_usage(), file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
