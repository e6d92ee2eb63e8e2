#!/usr/bin/env python3
"""
Integration Test Suite for the Storefront

Usage:
    1. Start MongoDB and the service: uvicorn storefront.main:app --port 8000
    2. Create an admin: storefront-create-admin admin@test.com 'Password123!'
    3. Run the script: ADMIN_EMAIL=admin@test.com ADMIN_PASSWORD='Password123!' python tests/integration_test.py

This script tests the full flow:
    - Authentication (Register/Login)
    - Catalog administration
    - Shopping Cart and stock caps
    - Checkout
    - Payment and order lifecycle
    - Security/Negative Tests

Output:
    - Console logs with pass/fail status
    - integration_test_results.json report
"""
import json
import os
import sys
import time
from datetime import datetime
from typing import Any, Dict

import requests

# Configuration
BASE_URL = os.getenv("STOREFRONT_URL", "http://localhost:8000")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@test.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "Password123!")
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
            self.save_result(name, "PASS", time.time() - start)
        except AssertionError as e:
            self.save_result(name, "FAIL", time.time() - start, str(e))
        except (requests.RequestException, KeyError) as e:
            self.save_result(name, "ERROR", time.time() - start, repr(e))

    def assert_status(self, response, expected: int):
        if response.status_code != expected:
            raise AssertionError(f"Expected status {expected}, got {response.status_code}. Body: {response.text}")

    def auth(self, who: str) -> dict:
        return {"Authorization": f"Bearer {self.store[who + '_token']}"}

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

# --- Test Functions ---

def test_health_check(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/health")
    runner.assert_status(resp, 200)
    if resp.json()["status"] != "healthy":
        raise AssertionError("System is not healthy")

# Phase 1: Authentication

def register_user(runner: TestRunner):
    user_data = {
        "email": f"user_{int(time.time())}@test.com",
        "password": "Password123!",
        "full_name": "Test User"
    }
    resp = runner.session.post(f"{BASE_URL}/auth/register", json=user_data)
    runner.assert_status(resp, 200)
    runner.store["user_email"] = user_data["email"]
    runner.store["user_password"] = user_data["password"]

def login_users(runner: TestRunner):
    for who, email, password in (
        ("admin", ADMIN_EMAIL, ADMIN_PASSWORD),
        ("user", runner.store["user_email"], runner.store["user_password"]),
    ):
        resp = runner.session.post(f"{BASE_URL}/auth/login", json={"email": email, "password": password})
        runner.assert_status(resp, 200)
        runner.store[f"{who}_token"] = resp.json()["data"]["access_token"]

def add_address(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/account/addresses", headers=runner.auth("user"), json={
        "full_name": "Test User", "street": "123 Test St", "city": "Testville", "country": "US"
    })
    runner.assert_status(resp, 200)
    if not resp.json()["data"][0]["is_default"]:
        raise AssertionError("First address should become the default")

# Phase 2: Catalog

def create_product(runner: TestRunner):
    slug = f"it-{int(time.time())}"
    resp = runner.session.post(f"{BASE_URL}/admin/categories", headers=runner.auth("admin"),
                               json={"name": "Integration", "slug": slug})
    runner.assert_status(resp, 200)

    product_data = {
        "name": "Integration Test Product",
        "description": "A very nice product",
        "price": 40.00,
        "category": slug,
        "stock": 3
    }
    resp = runner.session.post(f"{BASE_URL}/admin/products", json=product_data, headers=runner.auth("admin"))
    runner.assert_status(resp, 200)
    runner.store["product_id"] = resp.json()["data"]["id"]

def list_products(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/products", params={"search": "Integration Test", "limit": 100})
    runner.assert_status(resp, 200)
    products = resp.json()["data"]["products"]
    if not any(p["id"] == runner.store["product_id"] for p in products):
        raise AssertionError("Created product not found in list")

# Phase 3: Cart

def add_to_cart_is_capped(runner: TestRunner):
    data = {"product_id": runner.store["product_id"], "quantity": 5}
    resp = runner.session.post(f"{BASE_URL}/cart/add", json=data, headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    body = resp.json()
    if body["data"]["adjusted_quantity"] != 3 or not body["warning"]:
        raise AssertionError(f"Expected the add to be capped at 3, got {body}")

    resp = runner.session.post(f"{BASE_URL}/cart/add", json=data, headers=runner.auth("user"))
    runner.assert_status(resp, 409)

def update_cart(runner: TestRunner):
    cart = runner.session.get(f"{BASE_URL}/cart", headers=runner.auth("user")).json()["data"]
    item_id = cart["items"][0]["item_id"]
    resp = runner.session.put(f"{BASE_URL}/cart/update", headers=runner.auth("user"),
                              json={"item_id": item_id, "quantity": 2})
    runner.assert_status(resp, 200)
    if resp.json()["data"]["items"][0]["quantity"] != 2:
        raise AssertionError("Cart quantity mismatch")

    resp = runner.session.post(f"{BASE_URL}/cart/validate", headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    if not resp.json()["data"]["valid"]:
        raise AssertionError("Cart should be valid")

# Phase 4: Checkout

def create_order(runner: TestRunner):
    resp = runner.session.post(f"{BASE_URL}/checkout/create", headers=runner.auth("user"),
                               json={"payment_method": "cod"})
    runner.assert_status(resp, 200)
    order = resp.json()["data"]
    runner.store["order_id"] = order["id"]
    if order["status"] != "pending":
        raise AssertionError("Order status should be pending")

def verify_cart_cleared_and_stock_taken(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/cart", headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    if resp.json()["data"]["items"]:
        raise AssertionError("Cart not cleared after order")

    pid = runner.store["product_id"]
    stock = runner.session.get(f"{BASE_URL}/products/{pid}").json()["data"]["stock"]
    if stock != 1:
        raise AssertionError(f"Expected 1 unit left, got {stock}")

# Phase 5: Payment and fulfilment

def process_payment(runner: TestRunner):
    oid = runner.store["order_id"]
    resp = runner.session.post(f"{BASE_URL}/orders/{oid}/payment", headers=runner.auth("user"), json={})
    runner.assert_status(resp, 200)
    order = resp.json()["data"]
    if order["payment_status"] != "paid" or order["status"] != "processing":
        raise AssertionError(f"Unexpected order state after payment: {order['status']}/{order['payment_status']}")

def fulfil_order(runner: TestRunner):
    oid = runner.store["order_id"]
    for status in ("shipped", "delivered"):
        resp = runner.session.put(f"{BASE_URL}/admin/orders/{oid}/status", headers=runner.auth("admin"),
                                  json={"status": status})
        runner.assert_status(resp, 200)

    resp = runner.session.put(f"{BASE_URL}/orders/{oid}/cancel", headers=runner.auth("user"))
    runner.assert_status(resp, 409)

# Phase 6: Negative Tests

def negative_tests(runner: TestRunner):
    resp = runner.session.get(f"{BASE_URL}/cart", headers={"Authorization": "Bearer invalid_token"})
    if resp.status_code != 401:
        raise AssertionError(f"Expected 401 for invalid token, got {resp.status_code}")

    resp = runner.session.get(f"{BASE_URL}/admin/orders", headers=runner.auth("user"))
    if resp.status_code != 403:
        raise AssertionError(f"Expected 403 for non-admin, got {resp.status_code}")

    bad_product = {"name": "Bad", "price": -10, "category": "bad"}
    resp = runner.session.post(f"{BASE_URL}/admin/products", json=bad_product, headers=runner.auth("admin"))
    if resp.status_code != 422: # Pydantic validation error
        raise AssertionError(f"Expected 422 for negative price, got {resp.status_code}")


def main():
    runner = TestRunner()
    runner.log("Starting Integration Tests...\n", Colors.HEADER)

    runner.run_test("Health Check", test_health_check, runner)

    runner.run_test("Register User", register_user, runner)
    runner.run_test("Login Users", login_users, runner)
    runner.run_test("Add Address", add_address, runner)

    runner.run_test("Create Product", create_product, runner)
    runner.run_test("List Products", list_products, runner)

    runner.run_test("Add to Cart (capped)", add_to_cart_is_capped, runner)
    runner.run_test("Update Cart", update_cart, runner)

    runner.run_test("Create Order", create_order, runner)
    runner.run_test("Verify Cart Cleared", verify_cart_cleared_and_stock_taken, runner)

    runner.run_test("Process Payment", process_payment, runner)
    runner.run_test("Fulfil Order", fulfil_order, runner)

    runner.run_test("Negative Tests", negative_tests, runner)

    runner.save_report()

    if any(r["status"] != "PASS" for r in runner.results):
        sys.exit(1)

if __name__ == "__main__":
    main()
