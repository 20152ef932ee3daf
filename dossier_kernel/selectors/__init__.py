"""Read-only query selectors."""

from dossier_kernel.selectors.base import BaseSelector
from dossier_kernel.selectors.dossier_selector import DossierSelector

__all__ = ["BaseSelector", "DossierSelector"]
