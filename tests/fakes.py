"""
In-memory upstreams for tests, served through ``httpx.MockTransport``.

- FakeStrapi: collections (orders, products, invoices), uploads, users/me,
  promotions quote
- FakeMercadoPago: preferences, payments, merchant orders
- FakeResend: the ``/emails`` endpoint

Every fake records the requests it saw so tests can assert on traffic.
"""

import itertools
import json
import re
import uuid
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, unquote

import httpx

# The customer every test session is seeded with
CUSTOMER_TOKEN = "customer-jwt"
CUSTOMER_ID = 7
CUSTOMER_EMAIL = "ana@example.com"

_FILTER_RE = re.compile(r"^filters((?:\[[^\]]*\])+)$")


def _path_parts(key: str) -> list[str]:
    match = _FILTER_RE.match(key)
    return re.findall(r"\[([^\]]*)\]", match.group(1)) if match else []


def _lookup(row: dict, path: list[str]) -> Any:
    value: Any = row
    for part in path:
        if isinstance(value, dict) and "data" in value and part not in value:
            value = value["data"]
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _check(row: dict, path: list[str], value: str) -> bool:
    *field_path, op = path
    actual = _lookup(row, field_path)
    if op == "$eq":
        return actual is not None and str(actual) == value
    if op == "$notNull":
        return (actual is not None) == (value == "true")
    raise AssertionError(f"unsupported filter operator {op}")


def _matches(row: dict, params: list[tuple[str, str]]) -> bool:
    or_groups: dict[str, list[tuple[list[str], str]]] = {}
    for key, value in params:
        parts = _path_parts(key)
        if not parts:
            continue
        if parts[0] == "$or":
            or_groups.setdefault(parts[1], []).append((parts[2:], value))
        elif not _check(row, parts, value):
            return False
    if or_groups:
        return any(
            all(_check(row, p, v) for p, v in conds) for conds in or_groups.values()
        )
    return True


def _json_response(status: int, payload: Any) -> httpx.Response:
    return httpx.Response(status, json=payload)


class FakeStrapi:
    """Strapi v5-style REST API over dicts."""

    def __init__(self, base_url: str = "http://strapi.test"):
        self.base_url = base_url
        self.collections: dict[str, list[dict]] = {
            "orders": [],
            "products": [],
            "invoices": [],
        }
        self.files: dict[str, bytes] = {}
        self.users: dict[str, dict] = {}
        self.quote_response: Optional[dict] = None
        self.requests: list[httpx.Request] = []
        # param key -> status; a GET carrying that key is refused
        self.reject_params: dict[str, int] = {}
        # collection -> predicate(data) returning an error status or None
        self.create_guards: dict[str, Callable[[dict], Optional[int]]] = {}
        self.fail_paths: dict[str, int] = {}
        self._ids = itertools.count(1)

    # -- seeding ------------------------------------------------------------

    def add(self, collection: str, **fields) -> dict:
        row = {
            "id": fields.pop("id", None) or next(self._ids),
            "documentId": fields.pop("documentId", None) or uuid.uuid4().hex[:24],
            **fields,
        }
        if "user" in row and not isinstance(row["user"], (dict, type(None))):
            row["user"] = {"id": int(row["user"])}
        self.collections.setdefault(collection, []).append(row)
        return row

    def add_user(self, token: str, user_id: int, email: str) -> dict:
        user = {"id": user_id, "email": email, "username": email.split("@")[0]}
        self.users[token] = user
        return user

    def get_row(self, collection: str, ref: Any) -> Optional[dict]:
        ref = str(ref)
        for row in self.collections.get(collection, []):
            if str(row.get("documentId")) == ref or str(row.get("id")) == ref:
                return row
        return None

    def calls(self, method: str, path_prefix: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.startswith(path_prefix)
        ]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # -- handler ------------------------------------------------------------

    def _media(self, row: dict) -> dict:
        out = dict(row)
        pdf = out.get("pdf")
        if isinstance(pdf, (int, str)):
            out["pdf"] = self._file_row(pdf)
        return out

    def _file_row(self, file_id: Any) -> Optional[dict]:
        name = f"/uploads/file_{file_id}.pdf"
        return {"id": int(file_id), "url": name} if name in self.files else None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = parse_qsl(request.url.query.decode(), keep_blank_values=True)

        if path in self.fail_paths:
            return _json_response(self.fail_paths[path], {"error": {"message": "boom"}})

        if path == "/api/users/me":
            token = request.headers.get("authorization", "")[7:]
            user = self.users.get(token)
            return _json_response(200, user) if user else _json_response(401, {"error": "x"})

        if path.startswith("/uploads/"):
            content = self.files.get(path)
            if content is None:
                return httpx.Response(404)
            return httpx.Response(
                200, content=content, headers={"content-type": "application/pdf"}
            )

        if path == "/api/upload" and request.method == "POST":
            file_id = next(self._ids)
            url = f"/uploads/file_{file_id}.pdf"
            body = request.content
            self.files[url] = body[body.find(b"%PDF") :] if b"%PDF" in body else body
            return _json_response(200, [{"id": file_id, "url": url}])

        if path == "/api/promotions/quote" and request.method == "POST":
            if self.quote_response is None:
                return _json_response(500, {"error": "quote unavailable"})
            return _json_response(200, self.quote_response)

        match = re.match(r"^/api/([\w-]+)(?:/([^/]+))?$", path)
        if not match:
            return _json_response(404, {"error": "not found"})
        collection, ref = match.group(1), match.group(2)
        rows = self.collections.setdefault(collection, [])

        if request.method == "GET":
            for key, _ in params:
                if key in self.reject_params:
                    return _json_response(self.reject_params[key], {"error": "bad populate"})
            if ref:
                row = self.get_row(collection, unquote(ref))
                if row is None:
                    return _json_response(404, {"data": None})
                return _json_response(200, {"data": self._media(row)})
            found = [self._media(r) for r in rows if _matches(r, params)]
            size = dict(params).get("pagination[pageSize]")
            if size:
                found = found[: int(size)]
            return _json_response(200, {"data": found, "meta": {}})

        data = json.loads(request.content or b"{}").get("data") or {}

        if request.method == "POST" and not ref:
            guard = self.create_guards.get(collection)
            status = guard(data) if guard else None
            if status:
                return _json_response(status, {"error": {"message": "rejected"}})
            pdf = data.get("pdf")
            if isinstance(pdf, dict):
                data["pdf"] = (pdf.get("connect") or [pdf.get("data")])[0]
            row = self.add(collection, **data)
            return _json_response(200, {"data": row})

        if request.method == "PUT" and ref:
            row = self.get_row(collection, unquote(ref))
            if row is None:
                return _json_response(404, {"error": "not found"})
            row.update(data)
            return _json_response(200, {"data": row})

        return _json_response(405, {"error": "method"})


class FakeMercadoPago:
    def __init__(self):
        self.payments: dict[str, dict] = {}
        self.merchant_orders: dict[str, dict] = {}
        self.preferences: list[dict] = []
        self.preference_error: Optional[tuple[int, dict]] = None
        self.requests: list[httpx.Request] = []

    def add_payment(
        self,
        payment_id: str,
        status: str,
        external_reference: Optional[str],
        metadata: Optional[dict] = None,
        merchant_order_id: Optional[str] = None,
    ) -> dict:
        payment = {
            "id": int(payment_id),
            "status": status,
            "status_detail": "accredited" if status == "approved" else "pending_waiting",
            "external_reference": external_reference,
            "metadata": metadata or {},
            "order": {"id": int(merchant_order_id)} if merchant_order_id else None,
        }
        self.payments[str(payment_id)] = payment
        return payment

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/checkout/preferences" and request.method == "POST":
            if self.preference_error:
                return _json_response(*self.preference_error)
            body = json.loads(request.content)
            pref_id = f"pref-{len(self.preferences) + 1}"
            self.preferences.append(body)
            return _json_response(
                201,
                {
                    "id": pref_id,
                    "init_point": f"https://mp.test/checkout?pref_id={pref_id}",
                    "sandbox_init_point": f"https://sandbox.mp.test/checkout?pref_id={pref_id}",
                },
            )

        match = re.match(r"^/v1/payments/(\w+)$", path)
        if match:
            payment = self.payments.get(match.group(1))
            if payment is None:
                return _json_response(404, {"message": "Payment not found"})
            return _json_response(200, payment)

        match = re.match(r"^/merchant_orders/(\w+)$", path)
        if match:
            merchant_order = self.merchant_orders.get(match.group(1))
            if merchant_order is None:
                return _json_response(404, {"message": "Merchant order not found"})
            return _json_response(200, merchant_order)

        return _json_response(404, {"message": "not found"})


class FakeResend:
    def __init__(self):
        self.sent: list[dict] = []
        self.headers: list[httpx.Headers] = []
        self.error: Optional[tuple[int, dict]] = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.error:
            return _json_response(*self.error)
        self.sent.append(json.loads(request.content))
        self.headers.append(request.headers)
        return _json_response(200, {"id": f"email-{len(self.sent)}"})
