"""
Test Case 02: Class Sessions
- Create sessions (capacity defaults to the class)
- Generate sessions from schedules (idempotent)
- Lifecycle: start, complete, cancel, delete
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from datetime import date, timedelta

from utils import APIClient, TestResult, print_header, print_info, assert_status, assert_error, check
from config import test_data, staff_token


def run_session_tests() -> TestResult:
    """Run class session test cases"""
    print_header("TEST 02: Class Sessions")

    client = APIClient()
    result = TestResult()
    client.set_token(staff_token())

    if not test_data.gym_class_id:
        result.add_skip("Session tests", "No gym class from TEST 01")
        return result

    tomorrow = (date.today() + timedelta(days=1)).isoformat()

    # ===== Test 1: Session with class default capacity =====
    response = client.post("/api/cms/sessions", {
        "gym_class_id": test_data.gym_class_id,
        "session_date": tomorrow,
        "start_time": "07:00",
    })
    if assert_status(response, 201, result, "Create Session"):
        data = response.json()["data"]
        test_data.session_id = data["id"]
        check(result, "Capacity Defaults To Class Max", data["capacity"] == 10, f"capacity={data['capacity']}")
        check(result, "End Time From Duration", data["end_time"] == "08:00:00", f"end_time={data['end_time']}")

    # ===== Test 2: Small session for the waitlist scenario =====
    response = client.post("/api/cms/sessions", {
        "gym_class_id": test_data.gym_class_id,
        "session_date": tomorrow,
        "start_time": "09:00",
        "end_time": "10:00",
        "capacity": 2,
    })
    if assert_status(response, 201, result, "Create Session With Capacity 2"):
        test_data.small_session_id = response.json()["data"]["id"]

    # ===== Test 3: Generate sessions twice =====
    payload = {
        "gym_class_id": test_data.gym_class_id,
        "date_from": date.today().isoformat(),
        "date_to": (date.today() + timedelta(days=6)).isoformat(),
    }
    response = client.post("/api/cms/sessions/generate", payload)
    if assert_status(response, 200, result, "Generate Sessions"):
        first = response.json()["data"]
        print_info(f"Generated {first['created']} sessions")
        response = client.post("/api/cms/sessions/generate", payload)
        second = response.json()["data"]
        check(result, "Generation Is Idempotent", second["created"] == 0, f"second run created {second['created']}")

    response = client.post("/api/cms/sessions/generate", {
        "date_from": date.today().isoformat(),
        "date_to": (date.today() - timedelta(days=1)).isoformat(),
    })
    assert_error(response, 400, "INVALID_DATE_RANGE", result, "Reject Reversed Date Range")

    # ===== Test 4: List sessions =====
    response = client.get("/api/cms/sessions", {"gym_class_id": test_data.gym_class_id, "date_from": tomorrow})
    if assert_status(response, 200, result, "List Sessions"):
        check(result, "Sessions Found", response.json()["pagination"]["total"] >= 2)

    # ===== Test 5: Lifecycle on a throwaway session =====
    response = client.post("/api/cms/sessions", {
        "gym_class_id": test_data.gym_class_id,
        "session_date": tomorrow,
        "start_time": "13:00",
    })
    if assert_status(response, 201, result, "Create Lifecycle Session"):
        lifecycle_id = response.json()["data"]["id"]

        response = client.post(f"/api/cms/sessions/{lifecycle_id}/complete")
        assert_error(response, 409, "INVALID_SESSION_STATE", result, "Cannot Complete Scheduled Session")

        response = client.post(f"/api/cms/sessions/{lifecycle_id}/start")
        if assert_status(response, 200, result, "Start Session"):
            check(result, "Session In Progress", response.json()["data"]["status"] == "in_progress")

        response = client.put(f"/api/cms/sessions/{lifecycle_id}", {"notes": "late edit"})
        assert_error(response, 409, "INVALID_SESSION_STATE", result, "Cannot Edit Started Session")

        response = client.post(f"/api/cms/sessions/{lifecycle_id}/complete")
        if assert_status(response, 200, result, "Complete Session"):
            check(result, "Session Completed", response.json()["data"]["status"] == "completed")

        response = client.delete(f"/api/cms/sessions/{lifecycle_id}")
        assert_error(response, 409, "INVALID_SESSION_STATE", result, "Cannot Delete Completed Session")

    # ===== Test 6: Cancel then delete =====
    response = client.post("/api/cms/sessions", {
        "gym_class_id": test_data.gym_class_id,
        "session_date": tomorrow,
        "start_time": "15:00",
    })
    if assert_status(response, 201, result, "Create Session To Cancel"):
        cancel_id = response.json()["data"]["id"]
        response = client.post(f"/api/cms/sessions/{cancel_id}/cancel", {"reason": "Instructor sick"})
        if assert_status(response, 200, result, "Cancel Session"):
            check(result, "Session Cancelled", response.json()["data"]["session"]["status"] == "cancelled")
        response = client.delete(f"/api/cms/sessions/{cancel_id}")
        assert_status(response, 200, result, "Delete Cancelled Session")

    return result


if __name__ == "__main__":
    result = run_session_tests()
    success = result.summary()
    sys.exit(0 if success else 1)
