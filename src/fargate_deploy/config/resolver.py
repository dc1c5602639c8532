"""Per-environment parameter file loader."""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from fargate_deploy.config.models import (
    REQUIRED_KEYS,
    Configuration,
    Environment,
    RequiredParameters,
)
from fargate_deploy.utils.errors import (
    ConfigNotFoundError,
    ConfigSyntaxError,
    MissingRequiredKeyError,
)
from fargate_deploy.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PARAMS_DIR = "cloudformation/parameters"
SOURCE_SUFFIXES = (".json", ".yaml", ".yml")
STACK_PREFIX_PATTERN = re.compile(r"^[a-z][a-z0-9-]*$")


class ConfigResolver:
    """Loads and validates the parameter document for an environment."""

    def __init__(self, params_dir: Union[str, Path] = DEFAULT_PARAMS_DIR):
        """Initialize resolver.

        Args:
            params_dir: Directory holding ``<environment>.json`` (or .yaml/.yml)
        """
        self.params_dir = Path(params_dir)

    def candidates(self, environment: Environment) -> List[Path]:
        return [self.params_dir / f"{environment.value}{suffix}" for suffix in SOURCE_SUFFIXES]

    def resolve(self, environment: Union[Environment, str]) -> Configuration:
        """Load the configuration for ``environment``.

        Raises:
            ConfigNotFoundError: If no parameter file exists for the environment
            ConfigSyntaxError: If the file is not a key/value document
            MissingRequiredKeyError: Listing every absent or empty required key
        """
        environment = Environment(environment)
        candidates = self.candidates(environment)
        path = next((p for p in candidates if p.is_file()), None)
        if path is None:
            raise ConfigNotFoundError(environment.value, [str(p) for p in candidates])

        logger.info(f"Loading parameters from: {path}")
        values = self._parse(path)
        self._validate(values, path)

        config = Configuration(environment=environment, values=values, source=str(path))
        self._warn_conventions(config)

        logger.info(f"Stack Prefix: {config.stack_prefix}")
        logger.info(f"Environment:  {environment.value}")
        logger.info(f"Project:      {config.project_name}")
        return config

    def _parse(self, path: Path) -> Dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigSyntaxError(str(path), str(e), cause=e) from e

        if data is None:
            data = {}

        # Also accept the CloudFormation CLI parameter-list layout
        if isinstance(data, list):
            data = self._from_parameter_list(data, path)

        if not isinstance(data, dict):
            raise ConfigSyntaxError(
                str(path), f"expected a mapping of parameter names, got {type(data).__name__}"
            )

        for key, value in data.items():
            if not isinstance(key, str):
                raise ConfigSyntaxError(str(path), f"parameter name {key!r} is not a string")
            if isinstance(value, (dict, list)):
                raise ConfigSyntaxError(
                    str(path), f"parameter '{key}' must be a scalar value"
                )

        return data

    def _from_parameter_list(self, items: List[Any], path: Path) -> Dict[str, Any]:
        data = {}
        for item in items:
            if not isinstance(item, dict) or "ParameterKey" not in item:
                raise ConfigSyntaxError(
                    str(path), "parameter list entries need ParameterKey/ParameterValue"
                )
            data[item["ParameterKey"]] = item.get("ParameterValue")
        return data

    def _validate(self, values: Dict[str, Any], path: Path) -> None:
        try:
            RequiredParameters.model_validate(values)
        except PydanticValidationError as e:
            failing = {str(error["loc"][0]) for error in e.errors() if error.get("loc")}
            missing = [key for key in REQUIRED_KEYS if key in failing]
            raise MissingRequiredKeyError(missing or sorted(failing), path=str(path))

    def _warn_conventions(self, config: Configuration) -> None:
        if not STACK_PREFIX_PATTERN.match(config.stack_prefix):
            logger.warning(
                f"StackNamePrefix should be lowercase with hyphens: {config.stack_prefix}"
            )
        declared = str(config.base_values["Environment"])
        if declared != config.environment.value:
            logger.warning(
                f"Parameter file declares Environment={declared} "
                f"but '{config.environment.value}' was selected"
            )
