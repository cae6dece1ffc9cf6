"""Round and stop state machines."""

from delivery_rounds.models.round import RoundStatus, StopStatus


class RoundTransitions:
    """Valid delivery round state transitions."""

    TRANSITIONS = {
        RoundStatus.READY: [RoundStatus.IN_PROGRESS],
        RoundStatus.IN_PROGRESS: [RoundStatus.COMPLETED],
        RoundStatus.COMPLETED: [],
    }

    # States from which stops may be released and the round dissolved
    RELEASABLE = frozenset({RoundStatus.READY})

    # States in which stops may still be appended
    EXTENDABLE = frozenset({RoundStatus.READY})

    @classmethod
    def can_transition(cls, from_state: RoundStatus, to_state: RoundStatus) -> bool:
        """Check if a state transition is valid."""
        return to_state in cls.TRANSITIONS.get(from_state, [])

    @classmethod
    def can_release(cls, state: RoundStatus) -> bool:
        return state in cls.RELEASABLE

    @classmethod
    def can_extend(cls, state: RoundStatus) -> bool:
        return state in cls.EXTENDABLE


class StopTransitions:
    """Valid stop state transitions."""

    TRANSITIONS = {
        StopStatus.PENDING: [StopStatus.DELIVERED],
        StopStatus.DELIVERED: [],
    }

    @classmethod
    def can_transition(cls, from_state: StopStatus, to_state: StopStatus) -> bool:
        """Check if a state transition is valid."""
        return to_state in cls.TRANSITIONS.get(from_state, [])
