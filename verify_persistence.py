import time
import subprocess
import httpx
import sys
import os
import signal

BASE_URL = "http://127.0.0.1:8000"
API_PREFIX = "/v1"

USER = {
    "email": "persist_owner@example.com",
    "username": "persist_owner",
    "password": "securePassword123",
    "display_name": "Persist Owner"
}

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
        time.sleep(delay)
    print("❌ Server failed to start.")
    return False

def start_server(echo=False):
    env = {**os.environ, "DB_ECHO": "True"} if echo else None
    return subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "globetrotter.app.main:app", "--host", "127.0.0.1", "--port", "8000"],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        env=env
    )

def stop_server(proc):
    proc.send_signal(signal.SIGTERM)
    proc.wait()

def login():
    resp = httpx.post(
        f"{BASE_URL}{API_PREFIX}/auth/login",
        json={"username": USER["username"], "password": USER["password"]}
    )
    if resp.status_code != 200:
        print(f"❌ Login Failed: {resp.status_code} {resp.text}")
        raise Exception("Login failed")
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}

def run_verification():
    # 1. Start Server (First Run)
    print("\n--- [Step 1] Starting Server (Initial) ---")
    proc = start_server(echo=True)

    try:
        if not wait_for_server():
            server_logs = proc.communicate(timeout=2)
            print("Server Stdout:", server_logs[0].decode())
            print("Server Stderr:", server_logs[1].decode())
            raise Exception("Server start failed")

        # 2. Register User
        print("\n--- [Step 2] Registering User ---")
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/auth/register", json=USER)

        if resp.status_code == 400 and "already registered" in resp.text:
            print("⚠️ User already exists (persistence working from previous run?)")
        elif resp.status_code == 201:
            print("✅ User Registered Successfully")
        else:
            print(f"❌ Registration Failed: {resp.status_code} {resp.text}")
            raise Exception("Registration failed")

        # 3. Create and share a trip
        print("\n--- [Step 3] Creating a Public Trip ---")
        headers = login()
        resp = httpx.post(f"{BASE_URL}{API_PREFIX}/trips", json={"name": "Persistence Check"}, headers=headers)
        display_id = resp.json()["display_id"]
        resp = httpx.put(
            f"{BASE_URL}{API_PREFIX}/trips/{display_id}/share", json={"is_public": True}, headers=headers
        )
        share_token = resp.json()["share_token"]
        httpx.post(
            f"{BASE_URL}{API_PREFIX}/trips/{display_id}/chat",
            json={"action": "send", "body": "still here after a restart?"},
            headers=headers
        )
        print(f"✅ Trip {display_id} shared: {resp.json()['share_url']}")

    finally:
        print("\n--- [Step 4] Stopping Server ---")
        stop_server(proc)

    time.sleep(2) # Wait for port release

    # 5. Restart Server
    print("\n--- [Step 5] Restarting Server (Verification) ---")
    proc2 = start_server()

    try:
        if not wait_for_server():
            raise Exception("Server restart failed")

        headers = login()
        print("✅ Login Successful (User Persisted!)")

        # 6. Share link and chat history survive
        print("\n--- [Step 6] Verifying Share Link and Chat ---")
        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/shared/{share_token}")
        if resp.status_code == 200:
            print(f"✅ Share link still resolves to trip {resp.json()['display_id']}")
        else:
            print(f"❌ Share link lost: {resp.status_code}")

        resp = httpx.get(f"{BASE_URL}{API_PREFIX}/trips/{display_id}/chat", headers=headers)
        bodies = [m["body"] for m in resp.json()["messages"]]
        if bodies:
            print(f"✅ Chat history persisted: {bodies}")
        else:
            print(f"❌ Chat history empty: {resp.status_code} {resp.text}")

    finally:
        print("\n--- [Step 7] Stopping Server ---")
        stop_server(proc2)

if __name__ == "__main__":
    run_verification()
