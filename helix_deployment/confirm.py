from typing import Any, List, Optional

from helix_deployment.constants import ZERO_ADDRESS
from helix_deployment.recipe import DeploymentStep, DeployUnit


def _ask(question: str) -> bool:
    answer = input(question)
    if answer.lower().strip() == "n":
        print("Aborting deployment!")
        return False
    return True


def _continue() -> bool:
    """Asks the user to continue."""
    return _ask("Continue Y/N? ")


def _confirm_zero_address() -> bool:
    return _ask("Zero Address detected for deployment parameter; Continue? Y/N? ")


def _contains_zero_address(values: List[Any]) -> bool:
    for value in values:
        if isinstance(value, list):
            if _contains_zero_address(value):
                return True
        elif isinstance(value, str) and value.lower() == ZERO_ADDRESS:
            return True
    return False


def confirm_step(step: DeploymentStep, target: Optional[str], args: List[Any]) -> bool:
    """Shows the resolved arguments of a step and asks the user whether to submit it."""
    if isinstance(step, DeployUnit):
        names = list(step.arg_names) or [f"arg{i}" for i in range(len(args))]
        header = f"\nConstructor parameters for {step.contract} ({step.name})"
        question = f"Deploy {step.contract} Y/N? "
    else:
        names = [f"arg{i}" for i in range(len(args))]
        header = f"\nCall {step.contract or 'contract'}[{target}].{step.method} ({step.name})"
        question = f"Transact {step.method} Y/N? "

    if not args:
        print(f"{header}\n\t(i) No parameters")
    else:
        print(header)
        for name, resolved_value in zip(names, args):
            print(f"\t{name}={resolved_value}")

    if not _ask(question):
        return False
    if _contains_zero_address([target, *args]):
        return _confirm_zero_address()
    return True
