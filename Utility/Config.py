"""
YAML configs as (nested) `SimpleNamespace`.

* `load_config(path)`              - read a yaml file, `!include other.yaml` is resolved relative to it
* `build_dynamic_config(spec)`     - python literal where any `LoadFrom(path)` leaf is replaced by that file
* `override_config(cfg, ["a.b=1"])` - patch single values from the command line
"""
import copy
import json
import os
from pathlib import Path
from types import SimpleNamespace

import yaml
from typing_extensions import NamedTuple

from Utility.PrettyPrint import Logger


class LoadFrom(NamedTuple):
    path: Path


class IncludeLoader(yaml.SafeLoader):
    def __init__(self, stream):
        self._root = os.path.dirname(getattr(stream, "name", "."))
        super().__init__(stream)

    def include(self, node):
        target = Path(self._root, str(self.construct_scalar(node)))
        return _read_yaml(target)


IncludeLoader.add_constructor("!include", IncludeLoader.include)


def _read_yaml(path: Path):
    if not path.exists():
        Logger.write("fatal", f"Config file {path} does not exist")
        raise FileNotFoundError(path)
    with open(path, "r") as f:
        return yaml.load(f, IncludeLoader)


DynamicConfigSpec = dict[str, "DynamicConfigSpec"] | list["DynamicConfigSpec"] | LoadFrom | str | int | float | bool | None

def _resolve(spec: DynamicConfigSpec):
    match spec:
        case LoadFrom(path=path): return _read_yaml(Path(path))
        case dict()             : return {key: _resolve(value) for key, value in spec.items()}
        case list()             : return [_resolve(value) for value in spec]
        case _                  : return spec


def build_dynamic_config(spec: DynamicConfigSpec) -> tuple[SimpleNamespace, dict]:
    cfg = _resolve(copy.deepcopy(spec))
    return asNamespace(cfg), cfg


def load_config(path: Path) -> tuple[SimpleNamespace, dict]:
    data = _read_yaml(path)
    return asNamespace(data), data


def override_config(cfg: SimpleNamespace, overrides: list[str]) -> SimpleNamespace:
    """
    Apply `dotted.key=value` overrides in place, values are parsed as yaml scalars
    (e.g. `dtype=fp64`, `selector.nms_radius=2`, `storage.args.pad=4`).
    """
    for item in overrides:
        key, sep, raw_value = item.partition("=")
        if not sep:
            raise ValueError(f"Override should look like key=value, get '{item}'")

        *parents, leaf = key.strip().split(".")
        node = cfg
        for name in parents:
            if not hasattr(node, name): setattr(node, name, SimpleNamespace())
            node = getattr(node, name)
        setattr(node, leaf, asNamespace(yaml.safe_load(raw_value)))
        Logger.write("info", f"Config override {key} = {getattr(node, leaf)}")
    return cfg


def asNamespace(dictionary) -> SimpleNamespace:
    # Empty yaml mappings (`args:`) load as None, turn them into empty namespaces.
    def as_object(obj: dict):
        return SimpleNamespace(**{k: SimpleNamespace() if v is None else v for k, v in obj.items()})
    return json.loads(json.dumps(dictionary), object_hook=as_object)
