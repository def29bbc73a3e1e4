"""Cathedis — JSON actions behind a ``JSESSIONID`` session cookie.

Login posts the account's username and password to ``/login.jsp``; the
session cookie from the answer authenticates the ``/ws`` calls until it
expires, at which point the provider answers 401 and the session is renewed.
"""

import re

from delivery.errors import AuthenticationError
from delivery.provider.http import dig
from delivery.provider.port import OrderView, ParcelResult, StatusResult
from delivery.provider.session import SessionAdapter

_JSESSIONID = re.compile(r"JSESSIONID=([^;]+)")

STATUS_FIELDS = (
    "nomOrder",
    "id",
    "city.name",
    "sector.name",
    "amount",
    "phone",
    "recipient.name",
    "deliveryStatus.type",
    "status",
)


def format_phone(phone: str) -> str:
    """Cathedis wants Moroccan numbers in +212 form."""
    phone = str(phone).strip()
    if phone.startswith("+212"):
        return phone
    if phone.startswith("0"):
        return "+212" + phone[1:]
    if phone.startswith("212"):
        return "+" + phone
    return "+212" + phone


def weight_range(weight: float) -> str:
    if weight <= 5:
        return "Entre 1.2 Kg et 5 Kg"
    if weight <= 10:
        return "Entre 6Kg et 10Kg"
    if weight <= 29:
        return "Entre 11Kg et 29Kg"
    return "Plus de 30Kg"


class CathedisAdapter(SessionAdapter):
    slug = "cathedis"
    status_map = {
        "returned": ("Retourné", "Retour"),
        "cancelled": ("Annulé", "Refusé"),
        "delivered": ("Livré",),
        "shipped": ("En cours de livraison", "En distribution"),
        "processing": ("Ramassé", "En transit", "Au dépôt"),
        "confirmed": ("En attente de ramassage", "Nouveau"),
    }

    async def login(self, config) -> str:
        response = await self.request(
            "POST",
            f"{config.base_url}/login.jsp",
            config=config,
            json={
                "username": config.credentials["username"],
                "password": config.credentials["password"],
            },
            follow_redirects=False,
        )
        if response.status_code >= 400:
            raise AuthenticationError(f"Login refused (HTTP {response.status_code})", provider=self.slug)
        for header in response.headers.get_list("set-cookie"):
            match = _JSESSIONID.search(header)
            if match:
                return f"JSESSIONID={match.group(1)}"
        raise AuthenticationError("Login answer carried no JSESSIONID cookie", provider=self.slug)

    @staticmethod
    def build_payload(order: OrderView, options: dict) -> dict:
        delivery = {
            "recipient": order.customer_name,
            "phone": format_phone(order.customer_phone),
            "city": order.city or options.get("default_city", "Casablanca"),
            "sector": options.get("sector", "Centre Ville"),
            "address": order.address,
            "amount": f"{order.total_amount:.2f}",
            "nomOrder": order.order_number,
            "comment": order.notes,
            "subject": order.product_summary,
            "rangeWeight": weight_range(float(options.get("default_weight", 1))),
            "paymentType": "ESPECES",
            "deliveryType": "Livraison CRBT",
            "packageCount": "1",
        }
        return {"action": "delivery.api.save", "data": {"context": {"delivery": delivery}}}

    async def create_parcel(self, order: OrderView, config) -> ParcelResult:
        payload = self.build_payload(order, config.options)

        async def save(cookie):
            return await self.request(
                "POST",
                f"{config.base_url}/ws/action",
                config=config,
                creating=True,
                json=payload,
                headers={"Cookie": cookie},
            )

        body = self.json(await self.with_session(config, save))
        if body.get("status") == 0:
            delivery_id = dig(body, "data", 0, "values", "delivery", "id", provider=self.slug)
            return ParcelResult(success=True, tracking_number=str(delivery_id), raw_response=body)
        try:
            error = body["data"][0]["error"]["message"]
        except (KeyError, IndexError, TypeError):
            error = "Unknown error"
        return ParcelResult(success=False, raw_response=body, error=str(error))

    async def check_status(self, tracking_number: str, config) -> StatusResult:
        async def fetch(cookie):
            return await self.request(
                "POST",
                f"{config.base_url}/ws/rest/com.tracker.delivery.db.Delivery/{tracking_number}/fetch",
                config=config,
                json={"fields": list(STATUS_FIELDS)},
                headers={"Cookie": cookie, "Accept": "application/json"},
            )

        response = await self.with_session(config, fetch)
        if response.status_code != 200:
            return StatusResult(success=False, error=f"HTTP {response.status_code}")
        body = self.json(response)
        status = dig(body, "data", 0, "deliveryStatus", "name", provider=self.slug)
        return StatusResult(success=True, status=str(status), raw_response=body)
