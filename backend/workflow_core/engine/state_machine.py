"""
workflow_core/engine/state_machine.py

State machine engine - declarative transition tables with role requirements.

A StateMachine holds no per-entity state: the authoritative status lives on
the entity row. Callers ask the machine to validate (current -> target, role)
and then perform the mutation themselves.
"""
from typing import Any, Callable, Dict, List, Optional, Set
from dataclasses import dataclass, field
import logging

from workflow_core.errors import PermissionDenied, PreconditionFailed

logger = logging.getLogger(__name__)


@dataclass
class StateTransition:
    """
    Transition definition.

    Attributes:
        from_state: Source state
        to_state: Target state
        allowed_roles: Roles permitted to perform this transition. Empty means
            the machine-wide required roles for the target state apply.
        condition: Optional extra guard evaluated against a context dict
    """

    from_state: str
    to_state: str
    allowed_roles: Set[str] = field(default_factory=set)
    condition: Optional[Callable[[Dict[str, Any]], bool]] = None

    def is_allowed(self, context: Dict[str, Any]) -> bool:
        """Check the optional guard."""
        if self.condition is None:
            return True
        try:
            return bool(self.condition(context))
        except Exception as e:
            logger.error(f"Error checking transition condition {self.from_state}->{self.to_state}: {e}")
            return False


@dataclass
class StateMachineConfig:
    """
    State machine configuration.

    Attributes:
        name: Machine name, used in error messages ("Order", "Campaign")
        states: All states
        transitions: Legal transitions
        initial_state: State new entities start in
        terminal_states: States with no outgoing transitions
        required_roles: Target state -> roles allowed to move an entity into it
    """

    name: str
    states: List[str]
    transitions: List[StateTransition]
    initial_state: str
    terminal_states: Set[str] = field(default_factory=set)
    required_roles: Dict[str, Set[str]] = field(default_factory=dict)


class StateMachine:
    """
    Transition table validator.

    Features:
    - legal-transition lookup per source state
    - role check per transition or per target state
    - table export for admin tooling

    Example:
        >>> machine = StateMachine(StateMachineConfig(
        ...     name="Order",
        ...     states=["draft", "pending_approval"],
        ...     transitions=[StateTransition("draft", "pending_approval")],
        ...     initial_state="draft",
        ...     required_roles={"pending_approval": {"admin", "sales"}},
        ... ))
        >>> machine.validate_transition("draft", "pending_approval", "sales")
    """

    def __init__(self, config: StateMachineConfig):
        self._config = config
        self._transition_map: Dict[str, Dict[str, StateTransition]] = {}

        for t in config.transitions:
            if t.from_state not in config.states or t.to_state not in config.states:
                raise ValueError(f"{config.name}: transition {t.from_state}->{t.to_state} uses an unknown state")
            if t.from_state in config.terminal_states:
                raise ValueError(f"{config.name}: terminal state {t.from_state} cannot have outgoing transitions")
            self._transition_map.setdefault(t.from_state, {})[t.to_state] = t

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> StateMachineConfig:
        return self._config

    @property
    def initial_state(self) -> str:
        return self._config.initial_state

    def is_terminal(self, state: str) -> bool:
        return state in self._config.terminal_states

    def allowed_targets(self, from_state: str) -> List[str]:
        """Legal next states from a source state, in declaration order."""
        return list(self._transition_map.get(from_state, {}).keys())

    def required_roles(self, from_state: str, to_state: str) -> Set[str]:
        """Roles allowed to perform from_state -> to_state (empty = anyone)."""
        transition = self._transition_map.get(from_state, {}).get(to_state)
        if transition is not None and transition.allowed_roles:
            return set(transition.allowed_roles)
        return set(self._config.required_roles.get(to_state, set()))

    def can_transition(
        self,
        from_state: str,
        to_state: str,
        role: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            self.validate_transition(from_state, to_state, role, context)
        except (PreconditionFailed, PermissionDenied):
            return False
        return True

    def validate_transition(
        self,
        from_state: str,
        to_state: str,
        role: Optional[str],
        context: Optional[Dict[str, Any]] = None,
    ) -> StateTransition:
        """
        Validate a transition against the table, then against the role table.

        Args:
            from_state: Current state of the entity
            to_state: Requested state
            role: Actor role; None skips the role check (system callers)
            context: Optional guard context

        Returns:
            The matched StateTransition

        Raises:
            PreconditionFailed: Transition not in the table or guard rejected it
            PermissionDenied: Role not permitted
        """
        allowed = self.allowed_targets(from_state)
        transition = self._transition_map.get(from_state, {}).get(to_state)

        if transition is None:
            logger.warning(f"{self.name}: illegal transition {from_state} -> {to_state}")
            raise PreconditionFailed(
                f"Invalid {self.name.lower()} status transition from {from_state} to {to_state}. "
                f"Allowed: {', '.join(allowed) if allowed else 'none (terminal state)'}",
                details={"from_status": from_state, "to_status": to_state, "allowed": allowed},
            )

        if not transition.is_allowed(context or {}):
            raise PreconditionFailed(
                f"{self.name} transition {from_state} -> {to_state} is not allowed in the current context",
                details={"from_status": from_state, "to_status": to_state},
            )

        if role is not None:
            roles = self.required_roles(from_state, to_state)
            if roles and role not in roles:
                raise PermissionDenied(
                    f"Insufficient permissions. Required roles: {', '.join(sorted(roles))}",
                    details={"to_status": to_state, "role": role, "required_roles": sorted(roles)},
                )

        return transition

    def describe(self) -> Dict[str, Any]:
        """Export transitions and role requirements."""
        return {
            "name": self.name,
            "initial_state": self.initial_state,
            "transitions": {state: self.allowed_targets(state) for state in self._config.states},
            "required_roles": {k: sorted(v) for k, v in self._config.required_roles.items()},
            "terminal_states": sorted(self._config.terminal_states),
        }


__all__ = [
    "StateTransition",
    "StateMachineConfig",
    "StateMachine",
]
