"""Vitex — back-office form posts behind a ``PHPSESSID`` cookie, answered in HTML.

Success can only be inferred from the page text. When the page confirms the
parcel but no parcel code can be read from it, the parcel exists and the
outcome is reported as ambiguous rather than as a failure. Vitex offers no
status API.
"""

import html
import re

from delivery.errors import AuthenticationError, ProtocolError
from delivery.provider.port import Capability, OrderView, ParcelResult
from delivery.provider.session import SessionAdapter

SUCCESS_MARKER = "Colis bien ajouté"

_PHPSESSID = re.compile(r"PHPSESSID=([^;]+)")
_PARCEL_CODE = re.compile(r"\b([A-Z]{2,5}-?\d{5,})\b")
_LOGIN_FORM = re.compile(r"<input[^>]+name=[\"']password[\"']", re.IGNORECASE)
_TAGS = re.compile(r"<[^>]+>")


def page_text(content: str, limit: int = 200) -> str:
    text = html.unescape(_TAGS.sub(" ", content))
    return " ".join(text.split())[:limit]


class VitexAdapter(SessionAdapter):
    slug = "vitex"
    capabilities = frozenset({Capability.CREATE_PARCEL})

    async def login(self, config) -> str:
        response = await self.request(
            "POST",
            f"{config.base_url}/clients/login",
            config=config,
            data={
                "email": config.credentials["username"],
                "password": config.credentials["password"],
            },
            follow_redirects=False,
        )
        for header in response.headers.get_list("set-cookie"):
            match = _PHPSESSID.search(header)
            if match:
                return f"PHPSESSID={match.group(1)}"
        raise AuthenticationError("Login answer carried no PHPSESSID cookie", provider=self.slug)

    @staticmethod
    def build_payload(order: OrderView, options: dict) -> dict:
        return {
            "parcel_receiver": order.customer_name,
            "parcel_phone": order.customer_phone,
            "parcel_city": order.city_code or order.city,
            "parcel_address": order.address,
            "parcel_prd_name": order.product_summary,
            "parcel_prd_qty": str(order.total_quantity or 1),
            "parcel_note": order.notes,
            "parcel_price": f"{order.total_amount:.2f}",
            "hub_id": str(options.get("hub_id", 2)),
        }

    async def create_parcel(self, order: OrderView, config) -> ParcelResult:
        payload = self.build_payload(order, config.options)

        async def add(cookie):
            response = await self.request(
                "POST",
                f"{config.base_url}/clients/parcels?action=add-action",
                config=config,
                creating=True,
                data=payload,
                headers={
                    "Cookie": cookie,
                    "X-Requested-With": "XMLHttpRequest",
                    "Referer": f"{config.base_url}/clients/parcels?action=add",
                },
                follow_redirects=False,
            )
            if response.is_redirect or _LOGIN_FORM.search(response.text):
                raise AuthenticationError("Session is no longer valid", provider=self.slug)
            return response

        content = (await self.with_session(config, add)).text
        if SUCCESS_MARKER not in html.unescape(content):
            return ParcelResult(success=False, raw_response=content, error=page_text(content) or "Parcel was not added")

        match = _PARCEL_CODE.search(page_text(content, limit=10_000))
        if match is None:
            raise ProtocolError(
                "Vitex confirmed the parcel but returned no parcel code; verify it in the Vitex back office",
                provider=self.slug,
                ambiguous=True,
                body=content[:500],
            )
        return ParcelResult(success=True, tracking_number=match.group(1), raw_response=content)
