"""Pricebook update workflow: matching, stores and proposal lifecycle."""

from priceintel.workflow.matching import CatalogMatch, CatalogMatcher
from priceintel.workflow.repository import (
    PricingCatalogStore,
    ProposalStore,
    SqlPricingCatalogStore,
    SqlProposalStore,
    SqlUnitOfWork,
)
from priceintel.workflow.service import PricebookWorkflow, price_change_pct, rescale_cost

__all__ = [
    "CatalogMatch",
    "CatalogMatcher",
    "PricingCatalogStore",
    "ProposalStore",
    "SqlPricingCatalogStore",
    "SqlProposalStore",
    "SqlUnitOfWork",
    "PricebookWorkflow",
    "price_change_pct",
    "rescale_cost",
]
