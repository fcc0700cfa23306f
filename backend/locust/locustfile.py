"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Overselling one limited number
  locust -f locustfile.py --tags throughput   # Limit listing cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests
"""

import random
import uuid
from locust import HttpUser, task, between, tag, events

EVENT_ID = f"load-{uuid.uuid4().hex[:8]}"
LIMITED_NUMBER = "07"
LIMITED_MAX = 10


def random_vendor():
    return f"vendor_{random.randint(10000, 99999)}@test.com"


def random_client():
    return f"client {uuid.uuid4().hex[:10]}"


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: event {EVENT_ID}, number {LIMITED_NUMBER} capped at {LIMITED_MAX}")
    print("=" * 60)


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - many vendors, one number capped at 10

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify:
      SELECT times_sold FROM number_limits WHERE event_id = '<EVENT_ID>';
      SELECT SUM((r->>'quantity')::int) FROM tickets, json_array_elements(rows) r
       WHERE event_id = '<EVENT_ID>';
    Both should be <= 10 and equal.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = {"X-Vendor-Email": random_vendor()}
        self.client.put(
            f"/api/v1/events/{EVENT_ID}/number-limits",
            json={"number_range": LIMITED_NUMBER, "max_times": LIMITED_MAX},
            name="/api/v1/events/{id}/number-limits",
        )

    @tag("concurrency")
    @task
    def sell_limited_number(self):
        """Every user fights for the same 10 units."""
        with self.client.post(
            f"/api/v1/events/{EVENT_ID}/tickets",
            json={"client_name": random_client(), "rows": [{"number": LIMITED_NUMBER, "quantity": 1}]},
            headers=self.headers,
            name="/api/v1/events/{id}/tickets",
            catch_response=True,
        ) as resp:
            if resp.status_code == 201:
                resp.success()
            elif resp.status_code in (400, 409):
                resp.success()  # Expected: sold out (pre-check or refused increment)
            else:
                resp.failure(f"Unexpected: {resp.status_code}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - limit listing cache

    Run with and without Redis and compare P95 latency of the listing.
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_limits_cached(self):
        self.client.get(f"/api/v1/events/{EVENT_ID}/number-limits", name="/api/v1/events/{id}/number-limits [cached]")

    @tag("throughput", "read")
    @task(3)
    def check_availability(self):
        number = f"{random.randint(0, 99):02d}"
        self.client.get(
            f"/api/v1/events/{EVENT_ID}/availability/{number}?quantity=1",
            name="/api/v1/events/{id}/availability/{number}",
        )

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - bad input must get 4xx, never 5xx

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = {"X-Vendor-Email": random_vendor()}

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def zero_quantity(self):
        with self.client.post(
            f"/api/v1/events/{EVENT_ID}/tickets",
            json={"client_name": random_client(), "rows": [{"number": "12", "quantity": 0}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400])

    @tag("edge")
    @task
    def huge_quantity(self):
        with self.client.post(
            f"/api/v1/events/{EVENT_ID}/tickets",
            json={"client_name": random_client(), "rows": [{"number": LIMITED_NUMBER, "quantity": 999999}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 409])

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            f"/api/v1/events/{EVENT_ID}/tickets",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [400, 422])

    @tag("edge")
    @task
    def missing_vendor(self):
        with self.client.post(
            f"/api/v1/events/{EVENT_ID}/tickets",
            json={"client_name": random_client(), "rows": [{"number": "12", "quantity": 1}]},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])

    @tag("edge")
    @task
    def negative_limit(self):
        with self.client.put(
            f"/api/v1/events/{EVENT_ID}/number-limits",
            json={"number_range": "50", "max_times": -1},
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])


class RealisticUser(HttpUser):
    """
    TEST 4: Realistic mixed workload

    Run: locust -f locustfile.py -u 200 -r 20 --run-time 120s

      - Mostly browsing limits and own tickets
      - Some sales across a spread of numbers
      - Occasional deletes
    """
    wait_time = between(1, 3)

    def on_start(self):
        self.headers = {"X-Vendor-Email": random_vendor()}
        self.ticket_ids = []

    @task(30)
    def browse_limits(self):
        self.client.get(f"/api/v1/events/{EVENT_ID}/number-limits", name="/api/v1/events/{id}/number-limits")

    @task(20)
    def my_tickets(self):
        self.client.get(f"/api/v1/events/{EVENT_ID}/tickets", headers=self.headers, name="/api/v1/events/{id}/tickets")

    @task(10)
    def sell(self):
        rows = [{"number": f"{random.randint(0, 99):02d}", "quantity": random.randint(1, 3)} for _ in range(random.randint(1, 3))]
        resp = self.client.post(
            f"/api/v1/events/{EVENT_ID}/tickets",
            json={"client_name": random_client(), "rows": rows},
            headers=self.headers,
            name="/api/v1/events/{id}/tickets",
        )
        if resp.status_code == 201:
            self.ticket_ids.append(resp.json()["id"])

    @task(2)
    def delete(self):
        if self.ticket_ids:
            ticket_id = self.ticket_ids.pop()
            self.client.delete(
                f"/api/v1/events/{EVENT_ID}/tickets/{ticket_id}",
                headers=self.headers,
                name="/api/v1/events/{id}/tickets/{ticket_id}",
            )
