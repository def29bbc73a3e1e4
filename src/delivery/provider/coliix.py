"""Coliix — form-encoded POSTs to a single endpoint, authenticated by a token."""

from delivery.provider.http import HttpAdapter, dig
from delivery.provider.port import OrderView, ParcelResult, StatusResult


class ColiixAdapter(HttpAdapter):
    slug = "coliix"
    status_map = {
        "returned": ("Retourné", "Retour reçu", "Retour"),
        "cancelled": ("Annulé", "Refusé"),
        "delivered": ("Livré",),
        "shipped": ("Expédié", "Mis en distribution", "En cours de livraison"),
        "processing": ("Ramassé", "Reçu", "En stock"),
        "confirmed": ("Nouveau colis", "Attente de ramassage"),
    }

    @staticmethod
    def build_payload(order: OrderView, token: str) -> dict:
        return {
            "action": "add",
            "token": token,
            "name": order.customer_name,
            "phone": order.customer_phone,
            "marchandise": order.product_summary,
            "marchandise_qty": str(order.total_quantity),
            "ville": order.city,
            "adresse": order.address,
            "note": order.notes,
            "price": f"{order.total_amount:.2f}",
        }

    async def create_parcel(self, order: OrderView, config) -> ParcelResult:
        payload = self.build_payload(order, config.credentials["api_key"])
        response = await self.request("POST", config.base_url, config=config, creating=True, data=payload)
        body = self.json(response)
        if body.get("status") == 200 and body.get("tracking"):
            return ParcelResult(success=True, tracking_number=str(body["tracking"]), raw_response=body)
        return ParcelResult(success=False, raw_response=body, error=str(body.get("msg") or "Unknown error"))

    async def check_status(self, tracking_number: str, config) -> StatusResult:
        payload = {"action": "track", "token": config.credentials["api_key"], "tracking": tracking_number}
        response = await self.request("POST", config.base_url, config=config, data=payload)
        body = self.json(response)
        if body.get("status") is True:
            events = dig(body, "msg", provider=self.slug)
            if not isinstance(events, list) or not events:
                return StatusResult(success=False, raw_response=body, error="No tracking events yet")
            latest = dig(events, -1, "status", provider=self.slug)
            return StatusResult(success=True, status=str(latest).strip(), history=tuple(events), raw_response=body)
        return StatusResult(success=False, raw_response=body, error=str(body.get("msg") or "Invalid response format"))
