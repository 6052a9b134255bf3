"""
Static tier catalog.

Every tier the product has ever sold lives here. Entries are never removed:
a tier that stops being sold is marked ``retired`` so subscriptions that
still reference it keep resolving.
"""

from typing import Dict, List, Optional

from common.core.config import settings
from common.core.exceptions import (
    ConfigurationError,
    TierNotFoundError,
    ValidationError,
)
from packages.billing.models.domain.enums import Capability, SubscriptionTier
from packages.billing.models.domain.tiers import Tier, TierQuotas

CATALOG_VERSION = "2025-01"

_PRO_CAPABILITIES = frozenset(
    {
        Capability.EMAIL_SUPPORT,
        Capability.CUSTOM_PDF_UPLOADS,
        Capability.DOCUMENT_COMPARISON,
        Capability.PRIORITY_SUPPORT,
    }
)

DEFAULT_TIERS: Dict[SubscriptionTier, Tier] = {
    SubscriptionTier.FREE: Tier(
        id=SubscriptionTier.FREE,
        name="Free",
        description="Try it out on a single project",
        monthly_price_cents=0,
        quotas=TierQuotas(max_projects=1, max_uploads_per_period=3, max_seats=1),
        purchasable=False,
    ),
    SubscriptionTier.BASIC: Tier(
        id=SubscriptionTier.BASIC,
        name="Basic",
        description="For individual architects",
        monthly_price_cents=599,
        quotas=TierQuotas(max_projects=5, max_uploads_per_period=20, max_seats=1),
        capabilities=frozenset({Capability.EMAIL_SUPPORT}),
    ),
    SubscriptionTier.PRO: Tier(
        id=SubscriptionTier.PRO,
        name="Pro",
        description="For busy practices",
        monthly_price_cents=1499,
        quotas=TierQuotas(max_projects=25, max_uploads_per_period=100, max_seats=3),
        capabilities=_PRO_CAPABILITIES,
    ),
    SubscriptionTier.STUDIO: Tier(
        id=SubscriptionTier.STUDIO,
        name="Studio",
        description="For studios and teams",
        monthly_price_cents=4900,
        quotas=TierQuotas(max_projects=None, max_uploads_per_period=None, max_seats=10),
        capabilities=_PRO_CAPABILITIES
        | {
            Capability.API_ACCESS,
            Capability.TEAM_DASHBOARD,
            Capability.DEDICATED_SUPPORT,
        },
    ),
    SubscriptionTier.BETA: Tier(
        id=SubscriptionTier.BETA,
        name="Beta Tester",
        description="Unlimited access for beta testers",
        monthly_price_cents=0,
        quotas=TierQuotas(
            max_projects=None, max_uploads_per_period=None, max_seats=10
        ),
        capabilities=frozenset(Capability),
        privileged=True,
        purchasable=False,
    ),
}


class TierCatalog:
    """Lookup over the tier table. Pure data, no side effects."""

    def __init__(
        self,
        tiers: Optional[Dict[SubscriptionTier, Tier]] = None,
        price_ids: Optional[Dict[SubscriptionTier, str]] = None,
        version: str = CATALOG_VERSION,
    ):
        self._tiers = dict(tiers if tiers is not None else DEFAULT_TIERS)
        self.version = version

        missing = set(SubscriptionTier) - set(self._tiers)
        if missing:
            # Malformed catalog: a stored tier id could become unresolvable
            raise ConfigurationError(
                f"Tier catalog is missing: {sorted(t.value for t in missing)}"
            )

        if price_ids is None:
            price_ids = {
                SubscriptionTier.BASIC: settings.stripe_price_id_basic,
                SubscriptionTier.PRO: settings.stripe_price_id_pro,
                SubscriptionTier.STUDIO: settings.stripe_price_id_studio,
            }
        self._price_ids = price_ids

    def get(self, tier_id) -> Tier:
        """
        Get a tier by id.

        Raises:
            TierNotFoundError: tier id is not in the catalog (configuration error)
        """
        try:
            return self._tiers[SubscriptionTier(tier_id)]
        except (ValueError, KeyError):
            raise TierNotFoundError(str(getattr(tier_id, "value", tier_id)))

    def list(self) -> List[Tier]:
        """Tiers shown to customers, cheapest first."""
        visible = [
            tier
            for tier in self._tiers.values()
            if not tier.retired and not tier.privileged
        ]
        return sorted(visible, key=lambda t: (t.monthly_price_cents, t.id.value))

    def parse(self, raw: str) -> SubscriptionTier:
        """
        Parse an untrusted tier id from a request.

        Raises:
            ValidationError: unknown tier
        """
        try:
            return SubscriptionTier(raw)
        except ValueError:
            raise ValidationError(f"Unknown tier '{raw}'")

    def is_purchasable(self, tier_id: SubscriptionTier) -> bool:
        tier = self.get(tier_id)
        return tier.purchasable and tier.is_paid and not tier.retired

    def price_id(self, tier_id: SubscriptionTier) -> str:
        """
        Processor price id for a purchasable tier.

        Raises:
            ConfigurationError: no price id configured
        """
        price_id = self._price_ids.get(SubscriptionTier(tier_id))
        if not price_id:
            raise ConfigurationError(
                f"No processor price id configured for tier '{SubscriptionTier(tier_id).value}'"
            )
        return price_id

    def tier_for_price_id(self, price_id: Optional[str]) -> Optional[SubscriptionTier]:
        """Reverse lookup used when the processor reports a subscription."""
        if not price_id:
            return None
        for tier_id, configured in self._price_ids.items():
            if configured and configured == price_id:
                return tier_id
        return None


_catalog: Optional[TierCatalog] = None


def get_tier_catalog() -> TierCatalog:
    """Process-wide catalog built from settings."""
    global _catalog
    if _catalog is None:
        _catalog = TierCatalog()
    return _catalog
