"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Test overbooking
  locust -f locustfile.py --tags throughput   # Test cache
  locust -f locustfile.py --tags edge         # Test bad input
  locust -f locustfile.py                     # All tests

Creating tours needs a TOUR_LEADER account: set LEADER_EMAIL and
LEADER_PASSWORD, or CONCURRENCY_TOUR_ID for an already published tour.
"""

import os
import random
import string
from locust import HttpUser, task, between, tag, events
from datetime import datetime, timezone, timedelta

LEADER_EMAIL = os.environ.get("LEADER_EMAIL", "leader@example.com")
LEADER_PASSWORD = os.environ.get("LEADER_PASSWORD", "leaderpassword")
PASSWORD = "loadtest-password"

# Shared state
TOUR_IDS = []
CONCURRENCY_TOUR_ID = int(os.environ["CONCURRENCY_TOUR_ID"]) if os.environ.get("CONCURRENCY_TOUR_ID") else None


def random_email():
    return f"load_{random.randint(10000, 99999)}_{random_suffix()}@example.com"


def random_username():
    return "u_" + random_suffix()


def random_suffix():
    return "".join(random.choices(string.ascii_lowercase, k=8))


def register_and_login(client) -> dict:
    email = random_email()
    client.post("/api/v1/auth/register", json={
        "email": email,
        "username": random_username(),
        "password": PASSWORD
    })
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    if resp.status_code == 200:
        return {"Authorization": f"Bearer {resp.json()['access_token']}"}
    return {}


def tour_payload(title: str, spots: int) -> dict:
    start = datetime.now(timezone.utc) + timedelta(days=random.randint(7, 90))
    return {
        "title": title,
        "short_description": "Load test tour",
        "start_datetime": start.isoformat(),
        "end_datetime": (start + timedelta(hours=5)).isoformat(),
        "max_participants": spots
    }


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "="*60)
    print("SETUP: concurrency tour is created by the first ConcurrencyUser")
    print("="*60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - 100 users → 10 spots

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT participants_count FROM tours WHERE id = X;
      SELECT COUNT(*) FROM bookings WHERE tour_id = X AND status = 'CONFIRMED';
    Both should be equal and ≤ 10
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = register_and_login(self.client)

        if not CONCURRENCY_TOUR_ID:
            resp = self.client.post("/api/v1/auth/login", json={
                "email": LEADER_EMAIL,
                "password": LEADER_PASSWORD
            })
            if resp.status_code != 200:
                return
            leader = {"Authorization": f"Bearer {resp.json()['access_token']}"}
            resp = self.client.post("/api/v1/tours/",
                json=tour_payload("Concurrency Test Tour", 10), headers=leader)
            if resp.status_code == 201:
                tour_id = resp.json()["id"]
                self.client.post(f"/api/v1/tours/{tour_id}/publish", headers=leader)
                globals()["CONCURRENCY_TOUR_ID"] = tour_id
                print(f"\n✓ Published tour {tour_id} with 10 spots\n")

    @tag("concurrency")
    @task
    def book_limited_spots(self):
        """All users fight for the same 10 spots."""
        if not CONCURRENCY_TOUR_ID or not self.headers:
            return

        with self.client.post(f"/api/v1/tours/{CONCURRENCY_TOUR_ID}/book",
            headers=self.headers,
            name="/api/v1/tours/{id}/book",
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                resp.success()
            elif resp.status_code == 409:
                resp.success()  # Expected: FULL or ALREADY_BOOKED
            elif resp.status_code == 503:
                resp.success()  # Retries exhausted, client may try again
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false on the API, run again

    Compare:
      - Avg response time
      - Requests/sec
      - P95/P99 latency
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_tours_cached(self):
        """Hammer the cached endpoint."""
        page = random.randint(1, 5)
        resp = self.client.get(f"/api/v1/tours/?page={page}&page_size=20",
            name="/api/v1/tours/ [cached]")
        if resp.status_code == 200:
            for tour in resp.json().get("tours", []):
                if tour["id"] not in TOUR_IDS:
                    TOUR_IDS.append(tour["id"])

    @tag("throughput", "read")
    @task(3)
    def get_tour_detail(self):
        """Read individual tours."""
        if TOUR_IDS:
            self.client.get(f"/api/v1/tours/{random.choice(TOUR_IDS)}",
                name="/api/v1/tours/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = register_and_login(self.client)

    @tag("edge")
    @task
    def unknown_tour(self):
        """Book a tour that does not exist."""
        with self.client.post("/api/v1/tours/999999/book",
            headers=self.headers,
            name="/api/v1/tours/{missing}/book",
            catch_response=True
        ) as resp:
            if resp.status_code == 404:
                resp.success()
            else:
                resp.failure(f"Expected 404, got {resp.status_code}")

    @tag("edge")
    @task
    def non_numeric_tour_id(self):
        with self.client.post("/api/v1/tours/abc/book",
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 422:
                resp.success()
            else:
                resp.failure(f"Expected 422, got {resp.status_code}")

    @tag("edge")
    @task
    def unbook_without_booking(self):
        """Unbook a tour the user never booked."""
        if not TOUR_IDS:
            return
        with self.client.delete(f"/api/v1/tours/{random.choice(TOUR_IDS)}/book",
            headers=self.headers,
            name="/api/v1/tours/{id}/book [unbook]",
            catch_response=True
        ) as resp:
            if resp.status_code in [200, 409]:
                resp.success()
            else:
                resp.failure(f"Expected 200/409, got {resp.status_code}")

    @tag("edge")
    @task
    def plain_user_creates_tour(self):
        """Tour creation is reserved for tour leaders."""
        with self.client.post("/api/v1/tours/",
            json=tour_payload("Not allowed", 5),
            headers=self.headers,
            catch_response=True
        ) as resp:
            if resp.status_code == 403:
                resp.success()
            else:
                resp.failure(f"Expected 403, got {resp.status_code}")

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post("/api/v1/auth/login",
            data="not json at all",
            catch_response=True
        ) as resp:
            if resp.status_code in [400, 422]:
                resp.success()
            else:
                resp.failure(f"Expected 400/422, got {resp.status_code}")

    @tag("edge")
    @task
    def missing_auth(self):
        """Try booking without auth."""
        with self.client.post("/api/v1/tours/1/book", catch_response=True) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Expected 401, got {resp.status_code}")


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

    Simulates real traffic:
      - Mostly browsing
      - Some bookings and cancellations
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = register_and_login(self.client)
        self.booked = set()

    @task(50)
    def browse_tours(self):
        resp = self.client.get("/api/v1/tours/?page=1&page_size=20")
        if resp.status_code == 200:
            for tour in resp.json().get("tours", []):
                if tour["id"] not in TOUR_IDS:
                    TOUR_IDS.append(tour["id"])

    @task(20)
    def view_tour(self):
        if TOUR_IDS:
            self.client.get(f"/api/v1/tours/{random.choice(TOUR_IDS)}", name="/api/v1/tours/{id}")

    @task(10)
    def book_tour(self):
        if TOUR_IDS and self.headers:
            tour_id = random.choice(TOUR_IDS)
            resp = self.client.post(f"/api/v1/tours/{tour_id}/book",
                headers=self.headers, name="/api/v1/tours/{id}/book")
            if resp.status_code == 200:
                self.booked.add(tour_id)

    @task(3)
    def unbook_tour(self):
        if self.booked:
            tour_id = self.booked.pop()
            self.client.delete(f"/api/v1/tours/{tour_id}/book",
                headers=self.headers, name="/api/v1/tours/{id}/book [unbook]")
