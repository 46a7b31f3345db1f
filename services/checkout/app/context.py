"""Process-wide collaborators, built once in the application lifespan."""

from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from app.application.discounts import CouponService, DiscountResolver
from app.application.failed_orders import FailedOrderRecorder, FailOpenRateLimit
from app.application.pricing import OrderIntegrityGuard, PriceValidator, PricingPipeline
from app.core_settings import Settings
from app.domain.delivery import DeliveryFeeCalculator
from app.infrastructure.clients import (
    CustomerDirectory, HttpCustomerDirectory, HttpProductCatalog, ProductCatalog, UpstreamService,
)


@dataclass
class CheckoutContext:
    settings: Settings
    catalog: ProductCatalog
    customers: CustomerDirectory
    http: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CheckoutContext":
        http = httpx.AsyncClient(timeout=httpx.Timeout(settings.UPSTREAM_TIMEOUT_SECONDS))
        products = UpstreamService(http, settings.PRODUCTS_SERVICE_URL, "products", retries=settings.UPSTREAM_RETRIES)
        customers = UpstreamService(http, settings.CUSTOMERS_SERVICE_URL, "customers", retries=settings.UPSTREAM_RETRIES)
        return cls(
            settings=settings,
            catalog=HttpProductCatalog(products),
            customers=HttpCustomerDirectory(customers),
            http=http,
        )

    async def aclose(self) -> None:
        if self.http is not None:
            await self.http.aclose()

    def pricing_pipeline(self, db: Session) -> PricingPipeline:
        s = self.settings
        return PricingPipeline(
            validator=PriceValidator(self.catalog, s.PRICE_TOLERANCE),
            discounts=DiscountResolver(
                CouponService(db),
                self.customers,
                new_user_percentage=s.NEW_USER_DISCOUNT_PERCENTAGE,
                new_user_months=s.NEW_USER_DISCOUNT_MONTHS,
            ),
            delivery=DeliveryFeeCalculator(),
            guard=OrderIntegrityGuard(s.PRICE_TOLERANCE, s.TOTAL_MISMATCH_REJECT_THRESHOLD),
            tax_rate=s.TAX_RATE,
        )

    def failed_order_recorder(self, db: Session) -> FailedOrderRecorder:
        return FailedOrderRecorder(
            db,
            FailOpenRateLimit(self.settings.FAILED_ORDER_RATE_LIMIT, self.settings.FAILED_ORDER_RATE_WINDOW_SECONDS),
        )
