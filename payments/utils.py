import secrets
import string
from datetime import datetime, timezone

ALNUM = string.ascii_uppercase + string.digits


def generate_order_id(prefix="ORD"):
    ts = datetime.now(timezone.utc).strftime("%m%d%H%M%S")  # 10 chars
    rand = "".join(secrets.choice(ALNUM) for _ in range(6))
    base = f"{prefix}{ts}{rand}"
    # Gateway purpose strings and admin search expect <=20 alnum
    return base[-20:]


def gen_txn_id():
    return f"TXN{datetime.now(timezone.utc).strftime('%m%d%H%M%S')}{secrets.randbelow(1_000_000):06d}"


def gen_idempotency_key():
    return secrets.token_hex(16)
