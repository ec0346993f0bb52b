"""
Template catalog for AgentGate.

Templates are pre-built rule packs for common compliance regimes, bundled
as YAML files in the library/ directory next to this module. The catalog
is read once and every lookup hands out a deep copy, so a caller editing a
template (or a pack instantiated from one) never affects anyone else.

Design Decisions:
    - Template keys are the upper-case file stems (hipaa_compliance.yaml
      -> HIPAA_COMPLIANCE)
    - Templates are validated with the same models as stored packs
    - Instantiation copies rules into a new org-scoped pack; there is no
      link back to the template afterwards
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import ClassVar

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentgate.errors import TemplateNotFoundError
from agentgate.schema import CategoryRule, RuleCategory, parse_rules
from agentgate.store import GateDB

logger = logging.getLogger(__name__)


class PolicyTemplate(BaseModel):
    """
    A named blueprint for a policy pack.

    Attributes:
        key: Catalog key (e.g. "HIPAA_COMPLIANCE")
        name: Human-readable name used for instantiated packs
        description: What the template is for
        rules: Category -> rule definition
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(..., pattern=r"^[A-Z][A-Z0-9_]*$")
    name: str
    description: str = ""
    rules: dict[RuleCategory, CategoryRule]

    @field_validator("rules", mode="before")
    @classmethod
    def validate_rules(cls, v: dict) -> dict:
        return parse_rules(v or {})


class TemplateCatalog:
    """
    Read-only catalog of policy templates.

    Attributes:
        library_dir: Directory holding the template YAML files
    """

    LIBRARY_DIR: ClassVar[Path] = Path(__file__).resolve().parent / "library"

    def __init__(self, library_dir: Path | str | None = None) -> None:
        self.library_dir = Path(library_dir) if library_dir else self.LIBRARY_DIR
        self._templates = self._load(self.library_dir)

    @staticmethod
    def _load(library_dir: Path) -> dict[str, PolicyTemplate]:
        templates: dict[str, PolicyTemplate] = {}
        for path in sorted(library_dir.glob("*.yaml")):
            with path.open() as f:
                data = yaml.safe_load(f) or {}
            data.setdefault("key", path.stem.upper())
            template = PolicyTemplate.model_validate(data)
            templates[template.key] = template
        logger.debug("Loaded %d policy templates from %s", len(templates), library_dir)
        return templates

    def keys(self) -> list[str]:
        return list(self._templates)

    def get(self, key: str) -> PolicyTemplate:
        """
        Return a private copy of a template.

        Raises:
            TemplateNotFoundError: If the key is not in the catalog
        """
        template = self._templates.get(key)
        if template is None:
            raise TemplateNotFoundError(template=key, available=self.keys())
        return template.model_copy(deep=True)

    def entries(self) -> list[dict[str, str]]:
        """Key, name and description of every template, for selection UIs."""
        return [
            {"key": t.key, "name": t.name, "description": t.description}
            for t in self._templates.values()
        ]

    def instantiate(
        self,
        db: GateDB,
        key: str,
        scope: str | None,
        name: str | None = None,
        created_by: str = "system",
    ) -> str:
        """
        Copy a template into a new pack.

        Args:
            db: Store to create the pack in
            key: Template key
            scope: Organization ID for the new pack (None for global)
            name: Pack name (defaults to the template name)
            created_by: Actor creating the pack

        Returns:
            The new pack ID
        """
        template = self.get(key)
        rules = {
            category.value: rule.model_dump(mode="json", by_alias=True, exclude_none=True)
            for category, rule in template.rules.items()
        }
        pack_id = db.create_pack(
            name=name or template.name,
            rules=rules,
            scope=scope,
            created_by=created_by,
        )
        logger.info("Instantiated template %s as pack %s for scope %s", key, pack_id, scope)
        return pack_id


@lru_cache(maxsize=1)
def default_catalog() -> TemplateCatalog:
    """The catalog bundled with the package."""
    return TemplateCatalog()


def get_policy_template(key: str) -> PolicyTemplate:
    """Return a copy of a bundled template."""
    return default_catalog().get(key)


def list_policy_templates() -> list[dict[str, str]]:
    """List bundled templates as key/name/description entries."""
    return default_catalog().entries()


def instantiate_template(
    db: GateDB,
    key: str,
    scope: str | None,
    name: str | None = None,
    created_by: str = "system",
) -> str:
    """Copy a bundled template into a new pack and return its ID."""
    return default_catalog().instantiate(db, key, scope, name=name, created_by=created_by)
