#!/usr/bin/env python3
"""
Integration Test Suite for the Checkout Service

Usage:
    1. Ensure the checkout service and its dependencies are running
    2. Export CHECKOUT_TEST_TOKEN with a bearer token for a user whose cart
       holds at least one item and who has a saved address
    3. Run the script: python tests/integration_test.py

This script tests the full flow:
    - Opening checkout
    - Bill adjustments (tip, gift packaging, GSTIN)
    - Coupon sheet
    - Order placement and payment failure
    - Negative tests

Output:
    - Console logs with pass/fail status
    - integration_test_results.json report
"""
import requests
import json
import os
import time
import sys
from datetime import datetime
from typing import Dict, Any

# Configuration
BASE_URL = os.getenv("CHECKOUT_BASE_URL", "http://localhost:8010")
TOKEN = os.getenv("CHECKOUT_TEST_TOKEN", "")
RESULTS_FILE = "integration_test_results.json"

# Colors
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'

class TestRunner:
    def __init__(self):
        self.results = []
        self.session = requests.Session()
        self.session.headers["Authorization"] = f"Bearer {TOKEN}"
        self.store: Dict[str, Any] = {}
        self.start_time = time.time()

    def log(self, message: str, color: str = Colors.ENDC):
        print(f"{color}{message}{Colors.ENDC}")

    def save_result(self, name: str, status: str, duration: float, error: str = None):
        self.results.append({
            "test_name": name,
            "status": status,
            "duration": duration,
            "error": error,
            "timestamp": datetime.utcnow().isoformat()
        })
        color = Colors.GREEN if status == "PASS" else Colors.FAIL
        self.log(f"[{status}] {name} ({duration:.4f}s)", color)
        if error:
            self.log(f"  Error: {error}", Colors.FAIL)

    def run_test(self, name: str, func, *args, **kwargs):
        start = time.time()
        try:
            func(*args, **kwargs)
            duration = time.time() - start
            self.save_result(name, "PASS", duration)
        except AssertionError as e:
            duration = time.time() - start
            self.save_result(name, "FAIL", duration, str(e))
        except Exception as e:
            duration = time.time() - start
            self.save_result(name, "ERROR", duration, str(e))

    def assert_status(self, response, expected: int):
        if response.status_code != expected:
            raise AssertionError(f"Expected status {expected}, got {response.status_code}. Body: {response.text}")

    def save_report(self):
        with open(RESULTS_FILE, "w") as f:
            json.dump({
                "summary": {
                    "total": len(self.results),
                    "passed": len([r for r in self.results if r["status"] == "PASS"]),
                    "failed": len([r for r in self.results if r["status"] != "PASS"]),
                    "total_duration": time.time() - self.start_time
                },
                "results": self.results
            }, f, indent=2)
        self.log(f"\nTest results saved to {RESULTS_FILE}", Colors.BLUE)

def money(value) -> float:
    return float(value)

# --- Test Functions ---

def test_health_check(runner: TestRunner):
    resp = requests.get(f"{BASE_URL}/health")
    runner.assert_status(resp, 200)
    if resp.json()["status"] != "healthy":
        raise AssertionError("Checkout service is not healthy")

# Phase 1: Session

def open_checkout(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/checkout")
    runner.assert_status(resp, 200)
    data = resp.json()["data"]
    if data["state"] != "no_order":
        raise AssertionError(f"Fresh checkout should have no order, got {data['state']}")
    if not data["cart"]["items"]:
        raise AssertionError("Test user's cart is empty")
    runner.store["bill"] = data["bill"]

# Phase 2: Bill adjustments

def add_tip_and_gift(runner: TestRunner):
    base_total = money(runner.store["bill"]["grand_total"])

    resp = runner.session.put(f"{BASE_URL}/checkout/tip", json={"preset": "20"})
    runner.assert_status(resp, 200)
    resp = runner.session.put(f"{BASE_URL}/checkout/tip", json={"custom": "45"})
    runner.assert_status(resp, 200)
    resp = runner.session.put(f"{BASE_URL}/checkout/gift-packaging", json={"enabled": True})
    runner.assert_status(resp, 200)

    bill = resp.json()["data"]["bill"]
    if money(bill["tip_amount"]) != 45:
        raise AssertionError("Custom tip should replace the preset")
    if money(bill["grand_total"]) != base_total + 45 + 30:
        raise AssertionError(f"Unexpected grand total {bill['grand_total']}")

def save_gstin(runner: TestRunner):
    resp = runner.session.put(f"{BASE_URL}/checkout/gstin", json={"gstin": "27aapfu0939f1zv"})
    runner.assert_status(resp, 200)
    if resp.json()["data"]["gstin"] != "27AAPFU0939F1ZV":
        raise AssertionError("GSTIN was not normalised")

def view_coupons(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/checkout/coupons")
    runner.assert_status(resp, 200)
    runner.store["coupons"] = resp.json()["data"]["coupons"]

# Phase 3: Order

def place_order(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/checkout/place-order")
    runner.assert_status(resp, 200)
    data = resp.json()["data"]
    if data["requires_profile"]:
        resp = runner.session.post(f"{BASE_URL}/checkout/profile", json={
            "name": "Integration Tester",
            "email": f"tester_{int(time.time())}@test.com",
        })
        runner.assert_status(resp, 200)
        data = resp.json()["data"]

    if not data["payment_session"]:
        raise AssertionError("No payment session returned")
    runner.store["order_id"] = data["order_id"]

def double_place_rejected(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/checkout/place-order")
    runner.assert_status(resp, 409)

def report_payment_failure(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/checkout/payment/failure", json={
        "order_id": runner.store["order_id"],
        "reason": "Payment cancelled by user",
    })
    runner.assert_status(resp, 200)
    if resp.json()["data"]["outcome"]["status"] != "failed":
        raise AssertionError("Order should be failed")

    resp = runner.session.get(f"{BASE_URL}/checkout")
    data = resp.json()["data"]
    if data["state"] != "failed":
        raise AssertionError(f"Expected failed state, got {data['state']}")
    if not data["cart"]["items"]:
        raise AssertionError("Cart must survive a failed payment")

# Phase 4: Negative Tests

def negative_tests(runner: TestRunner):
    resp = requests.get(f"{BASE_URL}/checkout", headers={"Authorization": "Bearer invalid_token"})
    if resp.status_code != 401:
        raise AssertionError(f"Expected 401 for invalid token, got {resp.status_code}")

    resp = runner.session.put(f"{BASE_URL}/checkout/gstin", json={"gstin": "1234"})
    if resp.status_code != 422:
        raise AssertionError(f"Expected 422 for short GSTIN, got {resp.status_code}")

    resp = runner.session.put(f"{BASE_URL}/checkout/tip", json={"preset": "20", "custom": "5"})
    if resp.status_code != 422:
        raise AssertionError(f"Expected 422 for preset and custom tip together, got {resp.status_code}")

    resp = runner.session.post(f"{BASE_URL}/checkout/coupon", json={"code": "NOT-A-REAL-CODE"})
    if resp.status_code != 400:
        raise AssertionError(f"Expected 400 for unknown coupon, got {resp.status_code}")

def discard_checkout(runner: TestRunner):
    resp = runner.session.delete(f"{BASE_URL}/checkout")
    runner.assert_status(resp, 200)
    resp = runner.session.get(f"{BASE_URL}/checkout")
    runner.assert_status(resp, 404)


def main():
    if not TOKEN:
        print("CHECKOUT_TEST_TOKEN is not set")
        sys.exit(2)

    runner = TestRunner()
    runner.log("Starting Checkout Integration Tests...\n", Colors.HEADER)

    runner.run_test("Health Check", test_health_check, runner)
    runner.run_test("Open Checkout", open_checkout, runner)
    runner.run_test("Tip and Gift Packaging", add_tip_and_gift, runner)
    runner.run_test("Save GSTIN", save_gstin, runner)
    runner.run_test("View Coupons", view_coupons, runner)
    runner.run_test("Place Order", place_order, runner)
    runner.run_test("Double Place Rejected", double_place_rejected, runner)
    runner.run_test("Payment Failure", report_payment_failure, runner)
    runner.run_test("Negative Tests", negative_tests, runner)
    runner.run_test("Discard Checkout", discard_checkout, runner)

    runner.save_report()

    if any(r["status"] != "PASS" for r in runner.results):
        sys.exit(1)

if __name__ == "__main__":
    main()
