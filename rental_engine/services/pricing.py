"""
Pricing Engine Service
Loads a tenant's pricing data and quotes a rental with a full breakdown.
"""
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..models import Quote, QuoteRequest
from ..pricing.quoting import build_quote
from . import repository

logger = logging.getLogger(__name__)


class PricingService:
    """Service for calculating transparent pricing with breakdown."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def calculate_quote(self, tenant_id: str, request: QuoteRequest) -> Quote:
        """
        Calculate full pricing breakdown for a rental.

        Returns a quote with:
        - Base rate lines (best combination of months, weeks and days)
        - Extras, using vehicle-specific prices where set
        - Holiday and weekend surcharges per day
        - Total, unrounded; see Quote.presentation()
        """
        context = await repository.load_pricing_context(self.session, tenant_id, request.vehicle_id)
        return build_quote(context, request)
