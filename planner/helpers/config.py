import json
from os import environ

import yaml
from dotenv import find_dotenv
from pydantic import ValidationError

from planner.helpers.config_models.root import RootModel

_CONFIG_ENV = "CONFIG_JSON"
_CONFIG_FILE_ENV = "CONFIG_FILE"


def load_config() -> RootModel:
    """
    Load the config, by priority from:

    1. The JSON document in the `CONFIG_JSON` environment variable
    2. The YAML file named by `CONFIG_FILE` (default `config.yaml`), searched from the working directory up to the root
    3. Defaults only

    In all cases, environment variables override single values, as settings are built with the constructor.
    """
    if _CONFIG_ENV in environ:
        config = RootModel(**json.loads(environ[_CONFIG_ENV]))
        print(f'Config loaded from env "{_CONFIG_ENV}"')  # noqa: T201
        return config

    config_file = environ.get(_CONFIG_FILE_ENV, "config.yaml")
    path = find_dotenv(filename=config_file, usecwd=True)
    if not path:
        print(  # noqa: T201
            f'Cannot find env "{_CONFIG_ENV}" nor file "{config_file}", using defaults'
        )
        return RootModel()

    with open(
        encoding="utf-8",
        file=path,
    ) as f:
        config = RootModel(**(yaml.safe_load(f) or {}))
    print(f'Config loaded from file "{path}"')  # noqa: T201
    return config


# Load config
try:
    CONFIG = load_config()

# Pretty print validation errors
except ValidationError as e:
    err = "Config values are not valid:"
    for i, error in enumerate(e.errors()):
        err += f"\n{i + 1}. At {'.'.join(str(loc) for loc in error['loc'])}: {error['msg']} (input value: {error['input']})"
    raise ValueError(err)
