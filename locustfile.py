from locust import HttpUser, task, between
import random

SEARCH_TERMS = ["phone", "shirt", "electron", "book", "mug"]


class ShopperUser(HttpUser):
    wait_time = between(0.1, 0.5)

    def on_start(self):
        # Register a shopper for this simulated client
        email = f"shopper_{random.randint(1, 1_000_000)}@load.test"
        self.client.post(
            "/api/auth/register",
            json={"name": "Load", "email": email, "phone": "555", "zipcode": "00000", "password": "load-test"},
        )
        self.product_ids = []

    @task(4)
    def browse_catalog(self):
        page = random.randint(1, 3)
        r = self.client.get("/api/products", params={"page": page, "limit": 12})
        if r.status_code == 200:
            self.product_ids = [p["id"] for p in r.json()["data"]]

    @task(2)
    def search(self):
        term = random.choice(SEARCH_TERMS)
        self.client.get(f"/api/products/search/{term}", name="/api/products/search/[query]")

    @task(1)
    def view_product(self):
        if not self.product_ids:
            return
        pid = random.choice(self.product_ids)
        self.client.get(f"/api/products/{pid}", name="/api/products/[id]")
