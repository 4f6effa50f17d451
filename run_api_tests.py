import urllib.request
import urllib.error
import json
from datetime import datetime, timedelta, timezone

BASE = "http://localhost:8000/api/v1"

# Seed data expected on the target stack: ticket TKT-SMOKE-1 owned by
# test_seller (in the tickets table and at the escrow gateway), event open.
TICKET = "TKT-SMOKE-1"
SELLER = "test_seller"
BUYER = "test_buyer"
OBSERVER = "test_observer"

def post(path, body=None, user=None):
    data = json.dumps(body or {}).encode()
    req = urllib.request.Request(
        f"{BASE}{path}",
        data=data,
        headers={"Content-Type": "application/json"}
    )
    if user:
        req.add_header("X-User-Id", user)
    try:
        with urllib.request.urlopen(req) as r:
            return json.loads(r.read())
    except urllib.error.HTTPError as e:
        return json.loads(e.read())

def get(path, user=None, params=None):
    url = f"{BASE}{path}"
    if params:
        url += "?" + "&".join(f"{k}={v}" for k, v in params.items())
    req = urllib.request.Request(url)
    if user:
        req.add_header("X-User-Id", user)
    try:
        with urllib.request.urlopen(req) as r:
            return json.loads(r.read())
    except urllib.error.HTTPError as e:
        return json.loads(e.read())

def section(title):
    print(f"\n{'='*60}")
    print(f"### {title} ###")
    print('='*60)

def label(name):
    print(f"\n--- {name} ---")

def out(data):
    print(json.dumps(data, indent=2, ensure_ascii=False))

def in_hours(h):
    return (datetime.now(timezone.utc) + timedelta(hours=h)).isoformat()

# ── T1 Fees ────────────────────────────────────────────────────
section("T1 - FEE QUOTES")

label("T1-1: 5000 at 5% royalty, 2.5% platform (expect 250 / 125 / 4625)")
out(get("/fees/quote", params={"price": 5000, "royalty_percent": "5", "platform_fee_percent": "2.5"}))

label("T1-2: Rate finer than one basis point (expect 422)")
out(get("/fees/quote", params={"price": 5000, "royalty_percent": "2.555"}))

# ── T2 Listing lifecycle ───────────────────────────────────────
section("T2 - FIXED PRICE LISTING")

label("T2-1: Create listing without identity (expect 401)")
out(post("/listings", {"asset_id": TICKET, "kind": "FIXED_PRICE", "price": 5000}))

label("T2-2: Create listing for a ticket the caller does not own (expect 1001)")
out(post("/listings", {"asset_id": TICKET, "kind": "FIXED_PRICE", "price": 5000}, user=OBSERVER))

label("T2-3: Create fixed-price listing (test_seller, 5000)")
r = post("/listings", {"asset_id": TICKET, "kind": "FIXED_PRICE", "price": 5000,
                       "description": "Smoke test"}, user=SELLER)
out(r)
LISTING = (r.get("data") or {}).get("id", "")

label("T2-4: Create second listing for the same ticket (expect 3002)")
out(post("/listings", {"asset_id": TICKET, "kind": "FIXED_PRICE", "price": 6000}, user=SELLER))

label("T2-5: Cancel by someone other than the seller (expect not-owner error)")
out(post(f"/listings/{LISTING}/cancel", user=OBSERVER))

label("T2-6: Make an offer (test_buyer, 4000)")
out(post(f"/listings/{LISTING}/offers", {"amount": 4000, "expires_at": in_hours(24)}, user=BUYER))

label("T2-7: Get listing detail")
out(get(f"/listings/{LISTING}"))

label("T2-8: Seller buys own listing (expect self-purchase error)")
out(post(f"/listings/{LISTING}/purchase", user=SELLER))

label("T2-9: Buy now (test_buyer)")
out(post(f"/listings/{LISTING}/purchase", user=BUYER))

label("T2-10: Cancel after sale (expect 3004)")
out(post(f"/listings/{LISTING}/cancel", user=SELLER))

# ── T3 Search ──────────────────────────────────────────────────
section("T3 - SEARCH")

label("T3-1: Active listings")
out(get("/listings", params={"limit": 5}))

label("T3-2: All listings by test_seller")
out(get("/listings", params={"status": "ALL", "seller_id": SELLER}))

label("T3-3: Non-existent listing (expect 2001)")
out(get("/listings/lst_nonexistent"))

# ── T4 Operator ────────────────────────────────────────────────
section("T4 - OPERATOR")

label("T4-1: Run expiry sweep")
out(post("/admin/sweep", user=OBSERVER))

label("T4-2: Reconciliation items needing attention")
out(get("/admin/reconciliation", user=OBSERVER, params={"status": "MANUAL"}))

print("\n\n=== ALL TESTS COMPLETE ===\n")
