import difflib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel, Field

from .errors import UnknownComponentError

logger = logging.getLogger(__name__)

_COMPONENT_KEYS = ("parameters", "outputPorts", "template", "outputs")


class ParamDef(BaseModel):
    name: str
    type: str = "str"
    required: bool = False
    default: Any = None
    password: bool = False
    inputTypes: List[str] = Field(default_factory=list)
    displayName: Optional[str] = None
    description: str = ""
    advanced: bool = False

    @property
    def has_default(self) -> bool:
        return self.default is not None


class PortDef(BaseModel):
    name: str
    types: List[str] = Field(default_factory=lambda: ["Message"])


class ComponentSchema(BaseModel):
    """Parameter and output-port schema of one component type."""

    name: str
    displayName: Optional[str] = None
    description: str = ""
    parameters: List[ParamDef] = Field(default_factory=list)
    outputPorts: List[PortDef] = Field(default_factory=list)

    def param(self, name: str) -> Optional[ParamDef]:
        for p in self.parameters:
            if p.name == name:
                return p
        return None

    def param_names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @classmethod
    def from_template(cls, name: str, raw: Mapping[str, Any]) -> "ComponentSchema":
        """Build a schema from the ``template``/``outputs`` shape used by canvas exports.

        Template entries that are not field dicts (``_type``, code blobs) are skipped.
        """
        params = []
        for key, field in (raw.get("template") or {}).items():
            if not isinstance(field, dict) or key.startswith("_"):
                continue
            params.append(
                ParamDef(
                    name=field.get("name") or key,
                    type=field.get("type") or "str",
                    required=bool(field.get("required", False)),
                    default=field.get("value"),
                    password=bool(field.get("password", False)),
                    inputTypes=field.get("input_types") or [],
                    displayName=field.get("display_name"),
                    description=field.get("info") or "",
                    advanced=bool(field.get("advanced", False)),
                )
            )
        ports = [
            PortDef(name=out["name"], types=out.get("types") or ["Message"])
            for out in raw.get("outputs") or []
            if isinstance(out, dict) and out.get("name")
        ]
        return cls(
            name=name,
            displayName=raw.get("display_name"),
            description=raw.get("description") or "",
            parameters=params,
            outputPorts=ports,
        )


class ComponentCatalog:
    """Read-only view of the component catalog: type name -> schema.

    ``aliases`` maps alternative names (e.g. class names) onto catalog names.
    """

    def __init__(self, schemas: Optional[List[ComponentSchema]] = None, aliases: Optional[Dict[str, str]] = None):
        self.schemas: Dict[str, ComponentSchema] = {}
        self.aliases: Dict[str, str] = dict(aliases or {})
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: ComponentSchema):
        self.schemas[schema.name] = schema

    def lookup(self, type_name: str) -> Optional[ComponentSchema]:
        if not isinstance(type_name, str):
            return None
        if type_name in self.schemas:
            return self.schemas[type_name]
        alias = self.aliases.get(type_name)
        if alias:
            return self.schemas.get(alias)
        return None

    def require(self, type_name: str) -> ComponentSchema:
        schema = self.lookup(type_name)
        if schema is None:
            raise UnknownComponentError(type_name, self.suggest(type_name))
        return schema

    def suggest(self, type_name: str, n: int = 3, cutoff: float = 0.5) -> Optional[str]:
        """Return close matches for a misspelled component type, or None."""
        if not isinstance(type_name, str):
            return None
        matches = difflib.get_close_matches(type_name, list(self.schemas), n=n, cutoff=cutoff)
        return ", ".join(f"'{m}'" for m in matches) if matches else None

    def names(self) -> List[str]:
        return sorted(self.schemas)

    def get_all_metadata(self) -> List[ComponentSchema]:
        return [self.schemas[name] for name in self.names()]

    def __contains__(self, type_name: str) -> bool:
        return self.lookup(type_name) is not None

    def __iter__(self) -> Iterator[ComponentSchema]:
        return iter(self.get_all_metadata())

    def __len__(self) -> int:
        return len(self.schemas)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], aliases: Optional[Dict[str, str]] = None) -> "ComponentCatalog":
        """Build a catalog from a flat ``{name: schema}`` or a category-nested mapping."""
        catalog = cls(aliases=aliases)
        for name, entry in _flatten(raw):
            try:
                if "template" in entry and "parameters" not in entry:
                    schema = ComponentSchema.from_template(name, entry)
                else:
                    schema = ComponentSchema.model_validate({**entry, "name": name})
            except ValueError as e:
                logger.warning(f"Skipping malformed component schema {name}: {e}")
                continue
            catalog.register(schema)
        return catalog

    @classmethod
    def from_file(cls, path: Union[str, Path], aliases: Optional[Dict[str, str]] = None) -> "ComponentCatalog":
        with open(path, "r") as f:
            raw = json.load(f)
        catalog = cls.from_mapping(raw, aliases=aliases)
        logger.info(f"Loaded {len(catalog)} component schemas from {path}")
        return catalog


def _flatten(raw: Mapping[str, Any]):
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        if any(key in entry for key in _COMPONENT_KEYS):
            yield name, entry
        else:
            # category -> {name: schema}
            for sub_name, sub_entry in entry.items():
                if isinstance(sub_entry, dict):
                    yield sub_name, sub_entry
