"""Configuration models: environments, required parameters and the resolved map."""

from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


ParameterValue = Optional[Union[str, int, float, bool]]

REQUIRED_KEYS = ("StackNamePrefix", "Environment", "ProjectName")


def render_parameter(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class Environment(str, Enum):
    """Deployment environment selected once per invocation."""

    STAGING = "staging"
    PROD = "prod"

    @classmethod
    def names(cls) -> List[str]:
        return [env.value for env in cls]


class RequiredParameters(BaseModel):
    """Keys every environment's parameter file must define.

    Unknown keys are allowed and passed through untouched.
    """

    model_config = ConfigDict(extra="allow")

    stack_name_prefix: str = Field(..., alias="StackNamePrefix", min_length=1)
    environment: str = Field(..., alias="Environment", min_length=1)
    project_name: str = Field(..., alias="ProjectName", min_length=1)

    @field_validator("stack_name_prefix", "environment", "project_name", mode="before")
    @classmethod
    def coerce_scalar(cls, v: Any) -> Any:
        """Accept integral values and treat null or blank values as empty."""
        if v is None:
            return ""
        if isinstance(v, bool):
            raise ValueError("must be a string")
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        raise ValueError("must be a string")


class Configuration(Mapping):
    """Read-only parameter map for one environment.

    The mapping view is the loaded parameters merged with the outputs of
    every unit deployed so far. ``with_outputs`` returns a new instance;
    nothing is ever mutated in place.
    """

    def __init__(
        self,
        environment: Environment,
        values: Dict[str, ParameterValue],
        source: Optional[str] = None,
        unit_outputs: Tuple[Tuple[str, Dict[str, str]], ...] = (),
    ):
        self._environment = environment
        self._values = MappingProxyType(dict(values))
        self._source = source
        self._unit_outputs = tuple(
            (unit_id, MappingProxyType(dict(outputs))) for unit_id, outputs in unit_outputs
        )
        self._merged = MappingProxyType(self._build_view())

    def _build_view(self) -> Dict[str, Any]:
        view: Dict[str, Any] = {}
        # Later units win among outputs; loaded parameters win over outputs.
        # A null parameter is treated as unset.
        for _, outputs in self._unit_outputs:
            view.update(outputs)
        view.update((key, value) for key, value in self._values.items() if value is not None)
        return view

    @property
    def environment(self) -> Environment:
        return self._environment

    @property
    def source(self) -> Optional[str]:
        """Path of the document this configuration was loaded from."""
        return self._source

    @property
    def stack_prefix(self) -> str:
        return str(self._values["StackNamePrefix"])

    @property
    def project_name(self) -> str:
        return str(self._values["ProjectName"])

    @property
    def base_values(self) -> Mapping:
        """Parameters as loaded, without any unit outputs."""
        return self._values

    def full_name(self, unit_id: str) -> str:
        """Backend name of a unit instance: ``<prefix>-<env>-<unit_id>``."""
        return f"{self.stack_prefix}-{self._environment.value}-{unit_id}"

    def with_outputs(self, unit_id: str, outputs: Dict[str, str]) -> "Configuration":
        """Return a new Configuration that also exposes ``unit_id``'s outputs."""
        prior = tuple((uid, dict(out)) for uid, out in self._unit_outputs if uid != unit_id)
        return Configuration(
            environment=self._environment,
            values=dict(self._values),
            source=self._source,
            unit_outputs=prior + ((unit_id, dict(outputs)),),
        )

    def output(self, unit_id: str, name: str) -> str:
        """Look up an output published by an earlier unit.

        Raises:
            KeyError: If the unit has not published that output in this view
        """
        for uid, outputs in self._unit_outputs:
            if uid == unit_id:
                if name in outputs:
                    return outputs[name]
                break
        raise KeyError(f"{unit_id}.{name}")

    def published_units(self) -> List[str]:
        return [uid for uid, _ in self._unit_outputs]

    def parameters(self) -> Dict[str, str]:
        """Flat string view handed to unit definitions.

        Null parameters are absent, so the template default applies.
        """
        return {key: render_parameter(value) for key, value in self._merged.items()}

    def __getitem__(self, key: str) -> Any:
        return self._merged[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._merged)

    def __len__(self) -> int:
        return len(self._merged)

    def __repr__(self) -> str:
        return (
            f"Configuration(environment={self._environment.value!r}, "
            f"keys={len(self._values)}, units={self.published_units()!r})"
        )
