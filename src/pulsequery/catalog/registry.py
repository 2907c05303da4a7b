"""Query catalog - the registry of named query definitions.

declarative definitions live in yaml files next to this module (and in any
extra directories the deployment configures). yaml because the definitions
are mostly sql fragments and comments explaining them - much nicer to review
than python string literals. custom definitions are python functions and get
registered from custom.py.

the catalog is loaded once at startup and then only read.
"""

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from pulsequery.errors import CatalogError, UnknownParameterError
from pulsequery.models.definition import CustomQuery, DeclarativeQuery, QueryDefinition

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"

_definition_adapter: TypeAdapter[DeclarativeQuery | CustomQuery] = TypeAdapter(QueryDefinition)


class QueryCatalog:
    """Central registry of all query definitions."""

    def __init__(self) -> None:
        self._definitions: dict[str, DeclarativeQuery | CustomQuery] = {}

    def load_directory(self, path: Path) -> None:
        """Load all YAML definition files from a directory.

        recursively finds all yaml/yml files. each file holds a top-level
        `queries:` list.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Definitions directory not found: {path}")

        yaml_files = sorted([*path.glob("**/*.yaml"), *path.glob("**/*.yml")])
        if not yaml_files:
            raise CatalogError(f"No YAML files found in {path}")

        for yaml_file in yaml_files:
            self._load_file(yaml_file)

    def _load_file(self, path: Path) -> None:
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return  # empty file, no big deal

        for raw in data.get("queries", []):
            self.register(self._parse_definition(raw, path))
        logger.debug("Loaded definitions from %s", path)

    def _parse_definition(self, raw: dict[str, Any], source: Path) -> DeclarativeQuery:
        # custom queries need a python callable, yaml can only describe declarative ones
        if raw.get("kind", "declarative") != "declarative":
            raise CatalogError(
                f"{source}: query '{raw.get('name')}' must be declarative in YAML"
            )
        try:
            definition = _definition_adapter.validate_python({"kind": "declarative", **raw})
        except ValidationError as e:
            raise CatalogError(f"{source}: invalid query '{raw.get('name')}': {e}") from e
        return definition  # type: ignore[return-value]

    def register(self, definition: DeclarativeQuery | CustomQuery) -> None:
        if definition.name in self._definitions:
            raise CatalogError(f"Duplicate query definition: {definition.name}")
        self._definitions[definition.name] = definition

    def register_all(self, definitions: Iterable[DeclarativeQuery | CustomQuery]) -> None:
        for definition in definitions:
            self.register(definition)

    # --- lookup ---

    def get(self, name: str) -> DeclarativeQuery | CustomQuery:
        """Get a definition by name, or raise UnknownParameterError."""
        definition = self._definitions.get(name)
        if definition is None:
            raise UnknownParameterError(name, self.names())
        return definition

    def names(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[DeclarativeQuery | CustomQuery]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

    def describe(self) -> dict[str, dict[str, Any]]:
        """Per-query summary used by the types endpoint."""
        return {
            definition.name: {
                "allowedFilters": sorted(definition.allowed_filters),
                "customizable": definition.customizable,
                "defaultLimit": definition.limit,
            }
            for definition in self
        }


def build_default_catalog(extra_paths: Iterable[Path] = ()) -> QueryCatalog:
    """The bundled definitions plus any deployment-specific directories."""
    from pulsequery.catalog.custom import CUSTOM_QUERIES

    catalog = QueryCatalog()
    catalog.load_directory(DEFINITIONS_DIR)
    catalog.register_all(CUSTOM_QUERIES)
    for path in extra_paths:
        catalog.load_directory(path)
    logger.info("Query catalog loaded with %d definitions", len(catalog))
    return catalog
