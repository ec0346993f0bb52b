"""
Unit tests for the template library.

Tests cover:
- Catalog contents and listing
- Deep copies on lookup
- Instantiation into org-scoped packs
- Independence between templates and instantiated packs
- Evaluating bundled templates
"""

from pathlib import Path

import pytest

from agentgate.errors import TemplateNotFoundError
from agentgate.policy import evaluate
from agentgate.schema import (
    AgentFacts,
    Credential,
    PolicyInput,
    RuleCategory,
    TaskFacts,
    TaskRequirements,
)
from agentgate.store import GateDB
from agentgate.templates import (
    TemplateCatalog,
    get_policy_template,
    instantiate_template,
    list_policy_templates,
)

BUNDLED = [
    "ENTERPRISE_SECURITY",
    "FINRA_COMPLIANCE",
    "GDPR_COMPLIANCE",
    "HIPAA_COMPLIANCE",
    "MINIMAL",
]


class TestCatalog:
    """Tests for catalog lookups."""

    def test_bundled_keys(self) -> None:
        assert sorted(e["key"] for e in list_policy_templates()) == BUNDLED

    def test_entries_have_descriptions(self) -> None:
        for entry in list_policy_templates():
            assert entry["name"]
            assert entry["description"]

    def test_get_template(self) -> None:
        template = get_policy_template("HIPAA_COMPLIANCE")
        assert template.name == "HIPAA Compliance Pack"
        assert RuleCategory.DATA_RESIDENCY in template.rules

    def test_unknown_template(self) -> None:
        with pytest.raises(TemplateNotFoundError) as exc_info:
            get_policy_template("SOX")
        assert "MINIMAL" in exc_info.value.available

    def test_get_returns_copies(self) -> None:
        first = get_policy_template("HIPAA_COMPLIANCE")
        second = get_policy_template("HIPAA_COMPLIANCE")
        assert first == second
        assert first is not second
        assert first.rules is not second.rules

    def test_mutating_a_copy_leaves_catalog_unchanged(self) -> None:
        copy = get_policy_template("MINIMAL")
        copy.rules.clear()
        assert get_policy_template("MINIMAL").rules

    def test_custom_library_dir(self, temp_dir: Path) -> None:
        (temp_dir / "local_only.yaml").write_text(
            """
name: Local
rules:
  spendLimits: {}
"""
        )
        catalog = TemplateCatalog(temp_dir)
        assert catalog.keys() == ["LOCAL_ONLY"]
        assert catalog.get("LOCAL_ONLY").name == "Local"


class TestInstantiation:
    """Tests for copying templates into packs."""

    def test_instantiate_creates_scoped_pack(self, db: GateDB) -> None:
        pack_id = instantiate_template(db, "GDPR_COMPLIANCE", "org-a", created_by="alice")
        pack = db.get_pack(pack_id)
        assert pack.scope == "org-a"
        assert pack.name == "GDPR Compliance Pack"
        assert pack.version == "1.0.0"
        assert pack.created_by == "alice"
        assert pack.rules == get_policy_template("GDPR_COMPLIANCE").rules

    def test_instantiate_with_name(self, db: GateDB) -> None:
        pack_id = instantiate_template(db, "MINIMAL", "org-a", name="Org A baseline")
        assert db.get_pack(pack_id).name == "Org A baseline"

    def test_edits_to_copy_do_not_leak(self, db: GateDB) -> None:
        template_before = get_policy_template("HIPAA_COMPLIANCE")
        a_id = instantiate_template(db, "HIPAA_COMPLIANCE", "org-a")
        b_id = instantiate_template(db, "HIPAA_COMPLIANCE", "org-b")

        db.update_pack(a_id, rules={"dataResidency": False, "spendLimits": {}})

        assert get_policy_template("HIPAA_COMPLIANCE") == template_before
        assert db.get_pack(b_id).rules == template_before.rules
        assert db.get_pack(b_id).version == "1.0.0"
        assert not db.get_pack(a_id).rules[RuleCategory.DATA_RESIDENCY].enabled


class TestBundledTemplatesEvaluate:
    """Bundled templates produce sensible decisions."""

    def _pack(self, db: GateDB, key: str):
        return db.get_pack(instantiate_template(db, key, "org-a"))

    def test_hipaa_phi_requires_credential(self, db: GateDB) -> None:
        pack = self._pack(db, "HIPAA_COMPLIANCE")
        task = TaskFacts(
            id="t1",
            requirements=TaskRequirements(region="US", data_class="PHI"),
        )
        uncredentialed = AgentFacts(id="a1", regions=["US"], compliance_score=90)
        credentialed = AgentFacts(
            id="a2",
            regions=["US"],
            compliance_score=90,
            credentials=[Credential(type="HIPAA_COMPLIANT")],
        )

        denied = evaluate(pack, PolicyInput(agent=uncredentialed, task=task))
        assert "missing_required_credentials" in denied.reason_codes
        assert evaluate(pack, PolicyInput(agent=credentialed, task=task)).allow

    def test_minimal_inactive_agent(self, db: GateDB) -> None:
        pack = self._pack(db, "MINIMAL")
        result = evaluate(pack, PolicyInput(agent=AgentFacts(id="a1", status="SUSPENDED")))
        assert result.reason_codes == ["agent_inactive"]

    @pytest.mark.parametrize("key", BUNDLED)
    def test_every_template_allows_empty_input(self, db: GateDB, key: str) -> None:
        assert evaluate(self._pack(db, key), PolicyInput()).allow
