"""Service for retrieving billing plan information."""

from typing import Optional

from common.core.telemetry import trace_span, get_logger
from packages.billing.models.domain.enums import Capability
from packages.billing.models.domain.plans import PlanInfo, PlanLimits, PlansResponse
from packages.billing.models.domain.tiers import Tier
from packages.billing.services.tier_catalog import TierCatalog, get_tier_catalog

logger = get_logger(__name__)

CURRENCY_SYMBOLS = {"eur": "€", "usd": "$", "gbp": "£"}

# Pricing page wording for capability flags
CAPABILITY_LABELS = {
    Capability.EMAIL_SUPPORT: "Email support",
    Capability.CUSTOM_PDF_UPLOADS: "Custom PDF uploads",
    Capability.DOCUMENT_COMPARISON: "Document comparison",
    Capability.PRIORITY_SUPPORT: "Priority support",
    Capability.API_ACCESS: "API access",
    Capability.TEAM_DASHBOARD: "Team dashboard",
    Capability.DEDICATED_SUPPORT: "Dedicated support",
}


def format_price(price_cents: int, currency: str) -> str:
    """Format cents for display, dropping the decimals on whole amounts."""
    symbol = CURRENCY_SYMBOLS.get(currency, currency.upper() + " ")
    amount = price_cents / 100
    if amount == int(amount):
        return f"{symbol}{int(amount)}"
    return f"{symbol}{amount:.2f}"


class PlansService:
    """Service for retrieving plan information."""

    def __init__(self, catalog: Optional[TierCatalog] = None):
        self.catalog = catalog or get_tier_catalog()

    @trace_span
    async def get_all_plans(self) -> PlansResponse:
        """Get all sold plans with pricing and limits, cheapest first."""
        plans = [self._build_plan_info(tier) for tier in self.catalog.list()]
        return PlansResponse(catalog_version=self.catalog.version, plans=plans)

    def _build_plan_info(self, tier: Tier) -> PlanInfo:
        """Build PlanInfo for a tier."""
        return PlanInfo(
            tier=tier.id.value,
            name=tier.name,
            description=tier.description,
            price_cents=tier.monthly_price_cents,
            price_formatted=format_price(tier.monthly_price_cents, tier.currency),
            currency=tier.currency,
            billing_period="month",
            limits=PlanLimits(
                max_projects=tier.quotas.max_projects,
                max_uploads_per_period=tier.quotas.max_uploads_per_period,
                max_seats=tier.quotas.max_seats,
            ),
            features=self._build_features_list(tier),
        )

    def _build_features_list(self, tier: Tier) -> list[str]:
        """Build human-readable features list from limits and capabilities."""
        quotas = tier.quotas

        def _count(limit: Optional[int], singular: str, plural: str) -> str:
            if limit is None:
                return f"Unlimited {plural}"
            return f"{limit:,} {singular if limit == 1 else plural}"

        features = [
            _count(quotas.max_projects, "project", "projects"),
            _count(quotas.max_uploads_per_period, "upload", "uploads") + " per month",
            _count(quotas.max_seats, "seat", "seats"),
        ]
        features.extend(
            CAPABILITY_LABELS[capability]
            for capability in Capability
            if capability in tier.capabilities
        )
        return features
