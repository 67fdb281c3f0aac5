"""
Helpers shared by the interpreter and the data loader environment.
"""
import collections.abc
import importlib
from typing import Any, Dict

from tdd.tdd_datatypes import TypeNotConvertableToMap, DataLoaderError


def convert_to_data_map(value: Any) -> Dict[str, Any]:
    """Returns the entries of a hash-like value as a new dict.

    Raises TypeNotConvertableToMap if ``value`` is not a Mapping.
    """
    if isinstance(value, collections.abc.Mapping):
        return dict(value)
    raise TypeNotConvertableToMap(value)


def _builtin_loaders():
    # Imported lazily; the loaders import the interpreter, which imports this module.
    from tdd import tdd_loaders as dl
    return {
        "properties": dl.PropertiesDataLoader,
        "json": dl.JsonDataLoader,
        "yaml": dl.YamlDataLoader,
        "toml": dl.TomlDataLoader,
        "xml": dl.XmlDataLoader,
        "csv": dl.CsvDataLoader,
        "text": dl.TextDataLoader,
        "slicedText": dl.SlicedTextDataLoader,
        "tdd": dl.TddDataLoader,
        "tddSequence": dl.TddSequenceDataLoader,
        "now": dl.NowDataLoader,
    }


def get_data_loader_instance(name: str):
    """Returns a new data loader for the name used in a TDD function call.

    Besides the built-in names, ``package.module.ClassName`` names a custom
    ``DataLoader`` subclass.
    """
    from tdd.tdd_loaders import DataLoader

    cls = _builtin_loaders().get(name)
    if cls is not None:
        return cls()

    if not name or (name[0].islower() and "." not in name):
        raise DataLoaderError(f"Unknown data loader: {name}")
    module_name, _, class_name = name.rpartition(".")
    if not module_name:
        raise DataLoaderError(f"Data loader class not found: {name}")
    try:
        module = importlib.import_module(module_name)
        cls = getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise DataLoaderError(f"Data loader class not found: {name}") from e
    if not isinstance(cls, type):
        raise DataLoaderError(f"Data loader must be a class, but this is a(n) {type(cls).__name__}: {name}")
    if not issubclass(cls, DataLoader):
        raise DataLoaderError(
            "Data loader class must extend tdd.tdd_loaders.DataLoader, "
            f"but this class doesn't: {name}")
    try:
        return cls()
    except Exception as e:
        raise DataLoaderError(f"Failed to create an instance of {name}: {e}") from e
