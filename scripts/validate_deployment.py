"""
Pre-Deploy and Smoke Test Script.

Runs against the configured database through the application itself:
1. Health Check
2. Token minted for a deploy bot (tokens are issued externally in production)
3. Buyer Payment -> Settlement -> Tax -> Commission -> Seller Payout -> Close
4. Reconciliation of the smoke account
"""

import sys
import uuid
from decimal import Decimal

from fastapi.testclient import TestClient
from trust_backend.app.main import app
from trust_backend.app.core.jwt import create_access_token

BASE = "/v1/trust-accounts"


def print_step(step, msg):
    print(f"[{step}] {msg}")


def fail(msg):
    print(f"❌ FAILURE: {msg}")
    sys.exit(1)


def success(msg):
    print(f"✅ {msg}")


def expect(response, status_code, what):
    if response.status_code != status_code:
        fail(f"{what}: {response.status_code} {response.text}")
    return response.json()


def main():
    print("🚀 Starting Deployment Validation...")

    with TestClient(app) as client:
        # 1. Health Check
        print_step("PRE-DEPLOY", "Checking /health...")
        expect(client.get("/health"), 200, "Health check")
        success("Health check passed")

        # 2. Deploy bot token
        print_step("AUTH", "Minting accountant token...")
        token = create_access_token(
            data={"sub": "deploy_bot", "role": "ACCOUNTANT", "user_id": 1, "company_id": 1}
        )
        headers = {"Authorization": f"Bearer {token}"}

        # 3. Smoke Test: full sale on a throwaway property id
        print_step("SMOKE", "Running Buyer Payment -> Close flow...")
        property_id = uuid.uuid4().int % 1_000_000_000 + 1
        payment = expect(client.post(f"{BASE}/buyer-payments", headers=headers, json={
            "property_id": property_id,
            "amount": "1000.00",
            "payment_id": f"SMOKE-{uuid.uuid4().hex[:16]}",
            "property_label": "Deployment smoke test",
            "purchase_price": "1000.00",
        }), 201, "Buyer payment")
        account_id = payment["account"]["id"]
        success(f"Trust account {account_id} funded")

        settlement = expect(client.post(f"{BASE}/{account_id}/calculate-settlement", headers=headers, json={
            "commission_amount": "50", "cgt_rate": "0.05", "vat_on_commission_rate": "0.15",
        }), 200, "Settlement")
        net = Decimal(settlement["net_payout"])
        if net != Decimal("892.50"):
            fail(f"Unexpected net payout {net}")
        success(f"Settlement v{settlement['version']} net payout {net}")

        expect(client.post(f"{BASE}/{account_id}/apply-tax-deductions", headers=headers), 200, "Tax deductions")
        expect(client.post(f"{BASE}/{account_id}/apply-commission-deduction", headers=headers), 200, "Commission")
        expect(client.post(f"{BASE}/{account_id}/transfer-to-seller", headers=headers, json={
            "amount": str(net), "reference": "Smoke payout",
        }), 201, "Seller transfer")
        closed = expect(client.post(f"{BASE}/{account_id}/close", headers=headers, json={
            "lock_reason": "Deployment smoke test",
        }), 200, "Close")
        if closed["status"] != "CLOSED":
            fail(f"Account not closed: {closed['status']}")
        success("Trust account closed")

        # 4. Reconciliation
        print_step("VERIFY", "Reconciling smoke account...")
        recon = expect(client.get(f"{BASE}/{account_id}/reconciliation", headers=headers), 200, "Reconciliation")
        if not recon["healthy"]:
            fail(f"Reconciliation unhealthy: {recon}")
        success("Ledger replay matches balances")

    success("Deployment Validation Passed!")


if __name__ == "__main__":
    main()
