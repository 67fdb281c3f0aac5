"""
The callback contract between the TDD interpreter and the code that embeds
it.

An evaluation environment resolves function calls (``csv(data/birds.csv)``)
and observes the structure of the text being evaluated. For every ``ENTER_*``
event it receives, the matching ``LEAVE_*`` event is delivered later, even if
evaluation fails in between. If ``notify`` itself raises for an ``ENTER_*``
event, no ``LEAVE_*`` event follows.
"""

from abc import ABC, abstractmethod
from enum import Enum, IntEnum
from typing import Any, Optional, TYPE_CHECKING

from tdd.tdd_datatypes import FunctionCall

if TYPE_CHECKING:
    from tdd.tdd_interpreter import Interpreter


class Event(IntEnum):
    """Structural events; a leave event is the negated enter event."""
    ENTER_HASH_KEY = 1
    LEAVE_HASH_KEY = -1
    ENTER_FUNCTION_PARAMS = 3
    LEAVE_FUNCTION_PARAMS = -3
    ENTER_SEQUENCE = 4
    LEAVE_SEQUENCE = -4
    ENTER_HASH = 5
    LEAVE_HASH = -5

    @property
    def leave(self) -> "Event":
        return Event(-abs(self.value))

    @property
    def is_enter(self) -> bool:
        return self.value > 0


class Directive(Enum):
    """Non-None responses of ``notify`` that the interpreter understands.

    SKIP: for ENTER_HASH_KEY, don't evaluate nor store the value.
    FRAGMENT: for ENTER_HASH_KEY, store the value unevaluated as a Fragment
    (no effect on the implicit ``true`` of a bare key); for ENTER_HASH on a
    ``{...}`` literal, the whole literal becomes a Fragment.

    Any other non-None response is treated like SKIP.
    """
    SKIP = "skip"
    FRAGMENT = "fragment"

    def __repr__(self):
        return f"RETURN_{self.name}"


RETURN_SKIP = Directive.SKIP
RETURN_FRAGMENT = Directive.FRAGMENT


class EvaluationEnvironment(ABC):
    """Resolves function calls and receives structural notifications."""

    @abstractmethod
    def eval_function_call(self, call: FunctionCall, interpreter: "Interpreter") -> Any:
        """Returns the value of the call.

        Returning ``call`` itself means "unresolved"; the call then stays in
        the result as a FunctionCall object and is not evaluated again.
        """
        raise NotImplementedError

    def notify(self, event: Event, interpreter: "Interpreter",
               name: Optional[str], extra: Any) -> Any:
        """Called at structural points of the evaluation.

        ``name`` is the key for ENTER/LEAVE_HASH_KEY and the function name
        for ENTER/LEAVE_FUNCTION_PARAMS, otherwise None. ``extra`` is the
        dict or list being built for the HASH and SEQUENCE events (it may be
        modified), otherwise None. Unknown events must be ignored.

        ``interpreter.position`` points at the first character of the value
        for ENTER_HASH_KEY, after the opening bracket for the other enter
        events, and at the closing bracket (or the end of the text) for the
        leave events.
        """
        return None


class SimpleEvaluationEnvironment(EvaluationEnvironment):
    """Evaluates function calls to themselves and ignores notifications."""

    def eval_function_call(self, call, interpreter):
        return call

    def notify(self, event, interpreter, name, extra):
        return None


SIMPLE_EVALUATION_ENVIRONMENT = SimpleEvaluationEnvironment()
