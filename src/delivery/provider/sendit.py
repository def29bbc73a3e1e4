"""Sendit — REST JSON API with a bearer token."""

from delivery.provider.http import HttpAdapter, dig
from delivery.provider.port import Capability, OrderView, ParcelResult, StatusResult, WebhookReport


class SenditAdapter(HttpAdapter):
    slug = "sendit"
    capabilities = frozenset({Capability.CREATE_PARCEL, Capability.CHECK_STATUS, Capability.WEBHOOK})
    status_map = {
        "returned": ("RETURNED", "Retourné"),
        "cancelled": ("CANCELED", "CANCELLED", "REJECTED", "Annulé", "Refusé"),
        "delivered": ("DELIVERED", "Livré"),
        "shipped": ("DISTRIBUTED", "IN_DELIVERY", "En cours de livraison"),
        "processing": ("PICKED_UP", "TRANSIT", "RECEIVED", "Ramassé"),
        "confirmed": ("PENDING", "WAITING_PICKUP", "En attente"),
    }

    @staticmethod
    def _headers(config) -> dict:
        return {"Authorization": f"Bearer {config.credentials['access_token']}", "Accept": "application/json"}

    @staticmethod
    def build_payload(order: OrderView, options: dict) -> dict:
        return {
            "pickup_district_id": str(options.get("pickup_district_id", "1")),
            "district_id": order.city_code or "1",
            "name": order.customer_name,
            "amount": f"{order.total_amount:.2f}",
            "address": order.address,
            "phone": order.customer_phone,
            "comment": order.notes,
            "reference": order.order_number,
            "allow_open": "1",
            "allow_try": "1",
            "products_from_stock": "0",
            "products": " / ".join(item.product_name for item in order.items),
            "packaging_id": "1",
            "option_exchange": "0",
            "delivery_exchange_id": "0",
        }

    async def create_parcel(self, order: OrderView, config) -> ParcelResult:
        response = await self.request(
            "POST",
            f"{config.base_url}/deliveries",
            config=config,
            creating=True,
            json=self.build_payload(order, config.options),
            headers=self._headers(config),
        )
        body = self.json(response)
        if body.get("success"):
            code = dig(body, "data", "code", provider=self.slug)
            return ParcelResult(success=True, tracking_number=str(code), raw_response=body)
        return ParcelResult(success=False, raw_response=body, error=str(body.get("message") or "Unknown error"))

    async def check_status(self, tracking_number: str, config) -> StatusResult:
        response = await self.request(
            "GET",
            f"{config.base_url}/deliveries/{tracking_number}",
            config=config,
            headers=self._headers(config),
        )
        body = self.json(response)
        if body.get("success"):
            status = dig(body, "data", "status", provider=self.slug)
            return StatusResult(success=True, status=str(status), raw_response=body)
        return StatusResult(success=False, raw_response=body, error=str(body.get("message") or "Unknown error"))

    def parse_webhook(self, payload: dict) -> WebhookReport:
        data = payload.get("data", payload)
        return WebhookReport(
            tracking_number=str(dig(data, "code", provider=self.slug)),
            status=str(dig(data, "status", provider=self.slug)),
            details=data.get("comment"),
        )
