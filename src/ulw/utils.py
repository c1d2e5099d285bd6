from __future__ import annotations

import os
from copy import deepcopy
from dataclasses import MISSING, dataclass, fields
from typing import TypeVar

import tomli

from ulw.errors import InvalidConfig


# GenericConf class for typing only
@dataclass
class GenericConf:
    pass


T = TypeVar("T", bound=GenericConf)


def defaults_from_type(defaults: type[T], conf: dict | None) -> T:
    """
    Creates an instance of the config class. Values of conf override the
    defaults, unknown keys raise InvalidConfig.
    """

    if conf is None:
        return defaults()

    known = {f.name: f for f in fields(defaults)}
    if unknown := conf.keys() - known.keys():
        raise InvalidConfig(
            f"unknown keys for {defaults.__name__}: {', '.join(sorted(unknown))}"
        )

    # Values must have the type of the default if there is one.
    for key, value in conf.items():
        default = known[key].default
        if default is MISSING or default is None:
            continue
        if not isinstance(value, type(default)):
            raise InvalidConfig(
                f"'{key}' of {defaults.__name__} must be of type "
                f"{type(default).__name__}, got {value!r}"
            )

    return defaults(**deepcopy(conf))


def read_config_file(file_name: str) -> dict:
    config_path = os.path.expanduser(file_name)

    if not os.path.exists(config_path):
        raise InvalidConfig(f"Config file '{file_name}' does not exist")

    try:
        with open(config_path, "rb") as config_file:
            res = tomli.load(config_file)
    except tomli.TOMLDecodeError as e:
        raise InvalidConfig(f"Config file '{file_name}' is not valid toml: {e}") from e

    return res

