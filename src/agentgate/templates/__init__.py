"""
Policy template library for AgentGate.

Bundled blueprints for common compliance regimes:
    - HIPAA_COMPLIANCE
    - GDPR_COMPLIANCE
    - FINRA_COMPLIANCE
    - ENTERPRISE_SECURITY
    - MINIMAL

Instantiating a template copies its rules into a new org-scoped pack.
"""

from agentgate.templates.catalog import (
    PolicyTemplate,
    TemplateCatalog,
    default_catalog,
    get_policy_template,
    instantiate_template,
    list_policy_templates,
)

__all__ = [
    "PolicyTemplate",
    "TemplateCatalog",
    "default_catalog",
    "get_policy_template",
    "instantiate_template",
    "list_policy_templates",
]
