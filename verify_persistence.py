import time
import subprocess
import httpx
import sys
import os
import signal

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"
VEHICLE_ID = "persist-check-1"
SERVER_CMD = [sys.executable, "-m", "uvicorn", "fleet_analytics.app.main:app", "--host", "127.0.0.1", "--port", "8000"]


def wait_for_server(retries=10, delay=2):
    url = f"{BASE_URL}/health"
    print(f"Waiting for server at {url}...")
    for i in range(retries):
        try:
            resp = httpx.get(url)
            if resp.status_code == 200:
                print("✅ Server is up!")
                return True
        except httpx.ConnectError:
            pass
        except Exception as e:
            print(f"Connect error: {e}")
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False


def fetch_distance():
    resp = httpx.get(f"{BASE_URL}{API_PREFIX}/analytics/usage/{VEHICLE_ID}")
    resp.raise_for_status()
    buckets = resp.json()
    return sum(b["distance_traveled"] for b in buckets)


def run_verification():
    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = subprocess.Popen(
        SERVER_CMD,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env={**os.environ, "DB_ECHO": "True"}  # Enable echo to see SQL
    )

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Ingest a fuel reading
        print("\n--- [Step 2] Ingesting Reading (Persistence Test) ---")
        before = fetch_distance()
        event = {
            "topic": "sensor-data",
            "payload": {
                "vehicleId": VEHICLE_ID,
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "sensorType": "fuel",
                "fuelConsumed": 2.5,
                "distanceSinceLastReading": 25.0,
            },
        }
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/events", json=event)
        if resp.status_code == 200 and resp.json()["outcome"] == "applied":
            print("✅ Reading Applied")
        else:
            print(f"❌ Ingestion Failed: {resp.status_code} {resp.text}")
            raise Exception("Ingestion failed")

    finally:
        print("\n--- [Step 3] Stopping Server ---")
        proc.send_signal(signal.SIGTERM)
        proc.wait()

    time.sleep(2)  # Wait for port release

    # 3. Restart Server
    print("\n--- [Step 4] Restarting Server (Verification) ---")
    proc2 = subprocess.Popen(SERVER_CMD, stdout=subprocess.PIPE, stderr=subprocess.PIPE)

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        # 4. Read the bucket back
        print("\n--- [Step 5] Reading Usage (Post-Restart) ---")
        after = fetch_distance()
        if after - before >= 25.0:
            print(f"✅ Usage Persisted (distance {before} -> {after})")
        else:
            print(f"❌ Usage Lost (distance {before} -> {after})")
            raise Exception("Usage not persisted after restart")

    finally:
        print("\n--- [Step 6] Stopping Server ---")
        proc2.send_signal(signal.SIGTERM)
        proc2.wait()


if __name__ == "__main__":
    run_verification()
