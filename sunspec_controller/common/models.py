"""
SunSpec Model Definitions

Point and model schema loaded from a SunSpec model index (JSON).
The index maps model IDs to their point lists, in the layout of the
published SunSpec model JSON files:

    {"103": {"group": {"name": "inverter", "label": "...", "points": [...]}}}
"""

import json
import math
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from .exceptions import ConfigError, PointNotFoundError

BUNDLED_INDEX = "sunspec_models.json"

# Type names whose values are skipped by the implemented-point scan
NON_DATA_TYPES = frozenset({"pad", "sunssf"})

# SunSpec models are numeric; vendor register maps use names
ModelId = int | str


def normalize_model_id(value: object) -> ModelId:
    """Numeric IDs (including numeric strings) become int, anything else str."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid model id: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        raise ConfigError("Empty model id")
    return int(text) if text.isdigit() else text


@dataclass
class PointDefinition:
    """A single point (field) of a SunSpec model"""
    name: str
    type: str = "uint16"
    size: int | None = None
    offset: int | None = None
    sf: str | None = None
    static_scale: float | None = None
    units: str = ""
    label: str = ""
    chars: int | None = None
    unit_id: int | None = None

    @property
    def register_size(self) -> int:
        """Number of 16-bit registers the point occupies."""
        if self.size:
            return self.size
        if "32" in self.type:
            return 2
        if "64" in self.type:
            return 4
        if self.type == "string" and self.chars:
            return math.ceil(self.chars / 2)
        return 1


@dataclass
class ModelDefinition:
    """A SunSpec model and its ordered points"""
    model_id: ModelId
    name: str = ""
    label: str = ""
    length: int | None = None
    points: list[PointDefinition] = field(default_factory=list)

    def get_point(self, name: str) -> PointDefinition:
        for point in self.points:
            if point.name == name:
                return point
        raise PointNotFoundError(name, self.model_id)

    def has_point(self, name: str) -> bool:
        return any(point.name == name for point in self.points)

    def offset_of(self, name: str) -> int:
        """
        Register offset of a point from the model header address.

        An explicit offset wins, otherwise the sizes of all preceding
        points are summed.
        """
        offset = 0
        for point in self.points:
            if point.name == name:
                return point.offset if point.offset is not None else offset
            offset += point.register_size
        raise PointNotFoundError(name, self.model_id)

    def iter_layout(self):
        """Yield (offset, point) pairs in definition order."""
        offset = 0
        for point in self.points:
            position = point.offset if point.offset is not None else offset
            yield position, point
            offset += point.register_size


class ModelIndex:
    """Lookup of model definitions by model ID"""

    def __init__(self, models: dict[ModelId, ModelDefinition] | None = None):
        self._models: dict[ModelId, ModelDefinition] = dict(models or {})

    def __contains__(self, model_id: object) -> bool:
        return normalize_model_id(model_id) in self._models

    def __len__(self) -> int:
        return len(self._models)

    def get(self, model_id: ModelId) -> ModelDefinition | None:
        return self._models.get(normalize_model_id(model_id))

    def require(self, model_id: ModelId) -> ModelDefinition:
        model = self.get(model_id)
        if model is None:
            raise ConfigError(f"No definition loaded for model {model_id}")
        return model

    def add(self, model: ModelDefinition) -> None:
        self._models[model.model_id] = model

    @property
    def model_ids(self) -> list[ModelId]:
        return sorted(self._models, key=str)


def _parse_point(data: dict[str, Any]) -> PointDefinition:
    if "name" not in data:
        raise ConfigError(f"Point definition without name: {data}")

    static_scale = data.get("staticScale", data.get("static_scale"))
    unit_id = data.get("unitId", data.get("unit_id"))
    return PointDefinition(
        name=data["name"],
        type=data.get("type", "uint16"),
        size=data.get("size"),
        offset=data.get("offset"),
        sf=data.get("sf") if isinstance(data.get("sf"), str) else None,
        static_scale=float(static_scale) if static_scale is not None else None,
        units=data.get("units", ""),
        label=data.get("label", ""),
        chars=data.get("chars"),
        unit_id=int(unit_id) if unit_id is not None else None,
    )


def _parse_model(key: str | int, data: dict[str, Any]) -> ModelDefinition:
    if not isinstance(data, dict):
        raise ConfigError(f"Model {key} must be a mapping")

    group = data.get("group", data)
    return ModelDefinition(
        model_id=normalize_model_id(data.get("id", key)),
        name=group.get("name", ""),
        label=group.get("label", ""),
        length=group.get("len", data.get("len")),
        points=[_parse_point(p) for p in group.get("points", [])],
    )


def load_model_index(data: dict | list) -> ModelIndex:
    """
    Load a ModelIndex from a decoded model index document.

    Accepts a mapping of model ID to model JSON, or a list of model JSON
    objects each carrying an "id". Non-numeric keys are vendor register
    maps read from address 0.
    """
    index = ModelIndex()
    if isinstance(data, dict):
        for key, model_data in data.items():
            index.add(_parse_model(key, model_data))
    elif isinstance(data, list):
        for model_data in data:
            if "id" not in model_data:
                raise ConfigError("Model entries in a list must carry an id")
            index.add(_parse_model(model_data["id"], model_data))
    else:
        raise ConfigError("Model index must be a mapping or a list")
    return index


def load_model_index_file(path: str | Path | None = None) -> ModelIndex:
    """
    Load a model index from a JSON file, or the bundled index when no path is given.
    """
    try:
        if path is None:
            text = resources.files("sunspec_controller.data").joinpath(BUNDLED_INDEX).read_text()
        else:
            text = Path(path).read_text()
    except FileNotFoundError as e:
        raise ConfigError(f"Model index not found: {path}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid model index JSON: {e}") from e

    return load_model_index(data)
