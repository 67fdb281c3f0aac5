"""
The stock evaluation environment: TDD function calls are resolved to data
loaders, plus the ``get`` function that refers to already defined values.
"""
import collections.abc
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from tdd.tdd_datatypes import FunctionCall
from tdd.tdd_environment import Event, EvaluationEnvironment
from tdd.tdd_interpreter import get_type_name
from tdd.tdd_printer import quote_string
from tdd.tdd_util import get_data_loader_instance


def _dbg(*parts):
    if os.environ.get("TDD_DEBUG"):
        print("[DBG]", *parts, file=sys.stderr)


@dataclass
class DataContext:
    """What data loaders can see of the world around the TDD being evaluated."""
    # Relative file names given to data loaders are resolved against this
    data_root: Optional[str] = None
    # Used for files when the loader call doesn't specify an encoding
    source_encoding: str = "utf-8"
    # IANA zone name; None means the local zone
    time_zone: Optional[str] = None
    # Variables visible to ``get`` beyond the hashes being built
    data: Dict[str, Any] = field(default_factory=dict)

    def get_data(self, name: str) -> Any:
        return self.data.get(name)


class DataModelBuildingError(Exception):
    pass


class DataLoaderEvaluationEnvironment(EvaluationEnvironment):
    """Resolves function calls to data loaders.

    ``get(name, sub, subsub, ...)`` first looks at the hashes that are
    being built (innermost first), then at the context data. Hashes inside
    sequences or function call parameters are not visible to it.
    """

    def __init__(self, context: Optional[DataContext] = None):
        self.context = context if context is not None else DataContext()
        self._map_stack: List[Mapping[str, Any]] = []
        self._disable_map_stacking = 0

    def eval_function_call(self, call: FunctionCall, interpreter) -> Any:
        if call.name == "get":
            return self._get(call.params)
        _dbg("LOAD", call.name, "argc", len(call.params))
        loader = get_data_loader_instance(call.name)
        return loader.load(self.context, list(call.params))

    def _get(self, params) -> Any:
        current = None
        last = len(params) - 1
        for i, name in enumerate(params):
            if not isinstance(name, str):
                raise DataModelBuildingError(
                    "Parameters to function \"get\" must be strings, but parameter "
                    f"at position {i + 1} is a {get_type_name(name)}.")
            if current is None:
                value = self.find_top_level_variable(name)
            else:
                value = current.get(name)
            if value is None:
                if i == 0:
                    raise DataModelBuildingError(f"No variable with name {quote_string(name)} exists.")
                raise DataModelBuildingError(
                    f"No sub-variable with name {quote_string(name)} exists "
                    f"(referred by parameter at position {i + 1}).")
            if i == last:
                return value
            if not isinstance(value, collections.abc.Mapping):
                raise DataModelBuildingError(
                    f"Parameter at position {i + 1} must be the name of a hash variable, "
                    f"but it is the name of a {get_type_name(value)} variable.")
            current = value
        raise DataModelBuildingError(
            "Function \"get\" needs at least 1 arguments. get(name, subName, subSubName, ...)")

    def find_top_level_variable(self, name: str) -> Any:
        for m in reversed(self._map_stack):
            value = m.get(name)
            if value is not None:
                return value
        return self.context.get_data(name)

    def notify(self, event, interpreter, name, extra):
        match event:
            case Event.ENTER_SEQUENCE | Event.ENTER_FUNCTION_PARAMS:
                self._disable_map_stacking += 1
            case Event.LEAVE_SEQUENCE | Event.LEAVE_FUNCTION_PARAMS:
                self._disable_map_stacking -= 1
            case Event.ENTER_HASH if self._disable_map_stacking == 0:
                self._map_stack.append(extra)
            case Event.LEAVE_HASH if self._disable_map_stacking == 0:
                self._map_stack.pop()
        return None
