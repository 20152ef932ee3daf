"""
dossier_config -- workflow catalogs (product step templates).

Responsibility:
    Parses YAML workflow catalogs into frozen definitions and installs them
    into the template tables.  Services never read YAML; they read the
    installed template rows.

Architecture position:
    Configuration -- sits above ``dossier_kernel`` models.  The kernel never
    imports from this package.
"""

from dossier_config.installer import InstallSummary, install_catalog
from dossier_config.loader import (
    CATALOG_DIR,
    load_bundled_catalog,
    load_catalog,
    parse_catalog,
    validate_catalog,
)
from dossier_config.schema import (
    DocumentTypeDef,
    FieldDef,
    ProductDef,
    ProductStepDef,
    ReviewPolicyDef,
    StepDef,
    WorkflowCatalog,
)

__all__ = [
    "CATALOG_DIR",
    "DocumentTypeDef",
    "FieldDef",
    "InstallSummary",
    "ProductDef",
    "ProductStepDef",
    "ReviewPolicyDef",
    "StepDef",
    "WorkflowCatalog",
    "install_catalog",
    "load_bundled_catalog",
    "load_catalog",
    "parse_catalog",
    "validate_catalog",
]
