"""Instrumentor module."""

from .instrumentor import (
    ACTIVATION_VAR,
    RUNTIME_NAME,
    IInstrumentor,
    InstrumentationError,
    Instrumentor,
    collect_function_names,
    instrument,
    instrument_tree,
    parse_program,
)

__all__ = [
    "ACTIVATION_VAR",
    "RUNTIME_NAME",
    "IInstrumentor",
    "InstrumentationError",
    "Instrumentor",
    "collect_function_names",
    "instrument",
    "instrument_tree",
    "parse_program",
]
