import hashlib
import hmac
import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import requests
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from requests import RequestException

from ..exceptions import GatewayRejected, GatewayUnreachable, InvalidAmount, ValidationError
from ..fees import round2, to_amount

logger = logging.getLogger(__name__)

# Order of the business fields signed by the gateway in the callback ``mac``.
MAC_FIELDS = (
    "payment_id",
    "payment_request_id",
    "status",
    "amount",
    "buyer_name",
    "buyer_email",
    "buyer_phone",
    "purpose",
    "fees",
)

SUCCESS_STATUS = "Credit"
MIN_CHARGE = Decimal("1.00")
PHONE_RE = re.compile(r"^[6-9]\d{9}$")

STATE_PENDING = "pending"
STATE_SUCCESS = "success"
STATE_FAILED = "failed"


@dataclass(frozen=True)
class InstamojoConfig:
    api_key: str
    auth_token: str
    private_salt: str
    base_url: str
    webhook_url: str
    redirect_url: str
    send_email: bool = False
    send_sms: bool = False
    timeout: float = 30

    @classmethod
    def from_settings(cls) -> "InstamojoConfig":
        conf = getattr(settings, "INSTAMOJO", None) or {}
        missing = [k for k in ("API_KEY", "AUTH_TOKEN", "PRIVATE_SALT", "BASE_URL", "WEBHOOK_URL", "REDIRECT_URL") if not conf.get(k)]
        if missing:
            logger.error("Instamojo settings missing: %s", ", ".join(missing))
            raise ImproperlyConfigured(f"INSTAMOJO settings missing: {', '.join(missing)}")
        base_url = conf["BASE_URL"]
        return cls(
            api_key=conf["API_KEY"],
            auth_token=conf["AUTH_TOKEN"],
            private_salt=conf["PRIVATE_SALT"],
            base_url=base_url if base_url.endswith("/") else base_url + "/",
            webhook_url=conf["WEBHOOK_URL"],
            redirect_url=conf["REDIRECT_URL"],
            send_email=bool(conf.get("SEND_EMAIL", False)),
            send_sms=bool(conf.get("SEND_SMS", False)),
            timeout=float(conf.get("TIMEOUT", 30)),
        )


@dataclass
class PaymentIntent:
    purpose: str
    amount: Decimal
    buyer_name: str
    buyer_email: str
    buyer_phone: str
    redirect_url: str


@dataclass
class PaymentRequestResult:
    request_id: str
    redirect_url: str
    raw: dict = field(default_factory=dict)


@dataclass
class GatewayStatus:
    state: str
    payment_id: str = ""
    raw: dict = field(default_factory=dict)
    amount: Optional[str] = None  # amount actually paid, when reported


def normalize_status(gateway_status) -> str:
    return STATE_SUCCESS if str(gateway_status or "").strip() == SUCCESS_STATUS else STATE_FAILED


def compute_mac(payload: dict, salt: str) -> str:
    message = "|".join("" if payload.get(k) is None else str(payload[k]) for k in MAC_FIELDS)
    return hmac.new(salt.encode("utf-8"), message.encode("utf-8"), hashlib.sha1).hexdigest()


def validate_intent(intent: PaymentIntent) -> None:
    """Raise ValidationError listing every invalid field of ``intent``."""
    errors = []
    if len((intent.purpose or "").strip()) < 3:
        errors.append("purpose must be at least 3 characters")
    try:
        if to_amount(intent.amount) < MIN_CHARGE:
            errors.append(f"amount must be at least {MIN_CHARGE}")
    except InvalidAmount as e:
        errors.append(str(e))
    if not (intent.buyer_name or "").strip():
        errors.append("buyer name is required")
    try:
        validate_email(intent.buyer_email or "")
    except DjangoValidationError:
        errors.append("buyer email is invalid")
    if not PHONE_RE.match(intent.buyer_phone or ""):
        errors.append("buyer phone must be a 10 digit Indian mobile number")
    if not intent.redirect_url:
        errors.append("redirect url is required")
    if errors:
        raise ValidationError("; ".join(errors))


def _message(data) -> str:
    msg = data.get("message") if isinstance(data, dict) else None
    if isinstance(msg, (dict, list)):
        return json.dumps(msg)[:800]
    return str(msg or "")[:800]


class InstamojoClient:
    def __init__(self, config: InstamojoConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        return {
            "X-Api-Key": self.config.api_key,
            "X-Auth-Token": self.config.auth_token,
            "Accept": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _send(self, method: str, path: str, **kwargs):
        try:
            resp = self.session.request(method, self._url(path), headers=self._headers(), timeout=self.config.timeout, **kwargs)
        except RequestException as e:
            logger.error("Instamojo %s %s failed: %s", method, path, e)
            raise GatewayUnreachable(f"Gateway request failed: {e}")
        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}
        return resp, data

    def create_payment_request(self, intent: PaymentIntent) -> PaymentRequestResult:
        """Create a hosted payment request. Not retried: the endpoint is not idempotent."""
        validate_intent(intent)
        form = {
            "purpose": intent.purpose.strip(),
            "amount": f"{round2(to_amount(intent.amount)):.2f}",
            "buyer_name": intent.buyer_name.strip(),
            "email": intent.buyer_email,
            "phone": intent.buyer_phone,
            "redirect_url": intent.redirect_url,
            "webhook": self.config.webhook_url,
            "send_email": "true" if self.config.send_email else "false",
            "send_sms": "true" if self.config.send_sms else "false",
            "allow_repeated_payments": "false",
        }
        resp, data = self._send("POST", "payment-requests/", data=form)
        if resp.status_code >= 500:
            logger.error("Instamojo create payment request: HTTP %s %s", resp.status_code, _message(data))
            raise GatewayUnreachable(f"Gateway error {resp.status_code}")
        if not (isinstance(data, dict) and data.get("success")):
            msg = _message(data) or f"HTTP {resp.status_code}"
            logger.error("Instamojo rejected payment request: %s", msg)
            raise GatewayRejected(msg)
        pr = data.get("payment_request") or {}
        if not pr.get("id") or not pr.get("longurl"):
            raise GatewayRejected("Gateway response missing payment request id or url")
        return PaymentRequestResult(request_id=pr["id"], redirect_url=pr["longurl"], raw=data)

    def get_payment_status(self, request_id: str) -> GatewayStatus:
        """Poll a payment request. Unknown or not yet settled requests report ``pending``."""
        resp, data = self._send("GET", f"payment-requests/{request_id}/")
        if resp.status_code == 404 or (isinstance(data, dict) and "not found" in _message(data).lower()):
            return GatewayStatus(state=STATE_PENDING, raw=data if isinstance(data, dict) else {})
        if resp.status_code >= 500:
            raise GatewayUnreachable(f"Gateway error {resp.status_code}")
        if not (isinstance(data, dict) and data.get("success")):
            raise GatewayRejected(_message(data) or f"HTTP {resp.status_code}")

        pr = data.get("payment_request") or {}
        payments = pr.get("payments") or []
        for p in payments:
            if isinstance(p, dict) and p.get("status") == SUCCESS_STATUS:
                return GatewayStatus(state=STATE_SUCCESS, payment_id=p.get("payment_id", ""), raw=data, amount=p.get("amount"))
        status = str(pr.get("status") or "")
        if status in ("Expired", "Failed"):
            last = payments[-1] if payments and isinstance(payments[-1], dict) else {}
            return GatewayStatus(state=STATE_FAILED, payment_id=last.get("payment_id", ""), raw=data)
        return GatewayStatus(state=STATE_PENDING, raw=data)

    def refund(self, payment_id: str, amount, reason: str) -> dict:
        form = {
            "payment_id": payment_id,
            "type": "RFD",
            "body": reason,
            "refund_amount": f"{round2(to_amount(amount)):.2f}",
        }
        resp, data = self._send("POST", "refunds/", data=form)
        if resp.status_code >= 500:
            raise GatewayUnreachable(f"Gateway error {resp.status_code}")
        if not (isinstance(data, dict) and data.get("success")):
            raise GatewayRejected(_message(data) or f"HTTP {resp.status_code}")
        return data

    def verify_callback(self, payload: dict) -> bool:
        received = str((payload or {}).get("mac") or "").strip().lower()
        if not received:
            return False
        expected = compute_mac(payload, self.config.private_salt)
        return hmac.compare_digest(expected, received)


def get_client() -> InstamojoClient:
    return InstamojoClient(InstamojoConfig.from_settings())
