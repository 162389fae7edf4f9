from __future__ import annotations

import dataclasses
from typing import Any, Callable, Dict, List

from fpsr.core.constants import DEFAULT_PRECISION

FieldCheck = Callable[[Any], bool]


class DomainError(ValueError):
    """Raised when a generator argument has no meaningful interpretation."""

    def __init__(self, field: str, value: Any, reason: str | None = None):
        self.field = field
        self.value = value
        self.reason = reason
        message = f"Invalid {field}={value!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)

    def __reduce__(self):
        # Survives the trip back from analysis worker processes
        return (type(self), (self.field, self.value, self.reason))


class ParameterError(ValueError):
    """Raised when a generator parameter is unknown, missing or of the wrong type."""

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"{field}={value!r}: {reason}")

    def __reduce__(self):
        return (type(self), (self.field, self.value, self.reason))


def is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_int_pair(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) == 2 and all(is_int(v) for v in value)


def optional(check: FieldCheck) -> FieldCheck:
    return lambda value: value is None or check(value)


class Generator:
    """Callable generator wrapper."""

    def __init__(
        self,
        name: str,
        type_code: int,
        params_type: type,
        func: Callable[[int, Any, str], float],
        checks: Dict[str, FieldCheck],
    ):
        self.name = name
        self.type_code = type_code
        self.params_type = params_type
        self.func = func
        self.checks = checks

    def evaluate(self, coordinate: int, params: Any, precision: str = DEFAULT_PRECISION) -> float:
        if not isinstance(params, self.params_type):
            raise TypeError(
                f"Generator '{self.name}' expects {self.params_type.__name__}, got {type(params).__name__}"
            )
        return self.func(coordinate, params, precision)

    def check_value(self, key: str, value: Any) -> Any:
        """Validate one parameter value; pairs come back as tuples."""
        if key not in self.checks:
            raise ParameterError(key, value, f"unknown {self.name} parameter. Available: {sorted(self.checks)}")
        if not self.checks[key](value):
            raise ParameterError(key, value, f"wrong type for {self.name} parameter")
        return tuple(value) if isinstance(value, list) else value

    def build_params(self, **values: Any) -> Any:
        checked = {key: self.check_value(key, value) for key, value in values.items()}
        for f in dataclasses.fields(self.params_type):
            if f.name not in checked and f.default is dataclasses.MISSING:
                raise ParameterError(f.name, None, f"required {self.name} parameter")
        return self.params_type(**checked)


GENERATOR_REGISTRY: Dict[str, Generator] = {}


def register_generator(
    name: str,
    type_code: int,
    params_type: type,
    func: Callable[[int, Any, str], float],
    checks: Dict[str, FieldCheck],
):
    GENERATOR_REGISTRY[name] = Generator(
        name=name, type_code=type_code, params_type=params_type, func=func, checks=checks
    )


def get_generator(name: str) -> Generator:
    if name not in GENERATOR_REGISTRY:
        raise ValueError(f"Unknown generator '{name}'. Available: {list_generators()}")
    return GENERATOR_REGISTRY[name]


def get_generator_by_code(type_code: int) -> Generator:
    for generator in GENERATOR_REGISTRY.values():
        if generator.type_code == type_code:
            return generator
    codes = sorted(g.type_code for g in GENERATOR_REGISTRY.values())
    raise ValueError(f"Unknown generator type code {type_code!r}. Available: {codes}")


def list_generators() -> List[str]:
    return sorted(GENERATOR_REGISTRY.keys())
