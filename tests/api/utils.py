"""
Test Utilities for Clubhouse Gym API
"""
import requests
from typing import Optional, Dict
from config import BASE_URL, TENANT_ID

# Colors for terminal output
class Colors:
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    BOLD = '\033[1m'
    END = '\033[0m'


def print_header(title: str):
    """Print section header"""
    print(f"\n{Colors.BOLD}{Colors.CYAN}{'='*60}{Colors.END}")
    print(f"{Colors.BOLD}{Colors.CYAN}  {title}{Colors.END}")
    print(f"{Colors.BOLD}{Colors.CYAN}{'='*60}{Colors.END}\n")


def print_test(name: str, passed: bool, message: str = ""):
    """Print test result"""
    status = f"{Colors.GREEN}✓ PASS{Colors.END}" if passed else f"{Colors.RED}✗ FAIL{Colors.END}"
    print(f"  {status} - {name}")
    if message and not passed:
        print(f"       {Colors.YELLOW}{message}{Colors.END}")


def print_info(message: str):
    """Print info message"""
    print(f"  {Colors.BLUE}ℹ {message}{Colors.END}")


class APIClient:
    """HTTP Client for API testing"""

    def __init__(self, base_url: str = BASE_URL):
        self.base_url = base_url
        self.token: Optional[str] = None

    def set_token(self, token: str):
        """Set authorization token"""
        self.token = token

    def _headers(self) -> Dict:
        """Tenant header plus bearer token when set"""
        headers = {"Content-Type": "application/json", "X-Tenant-ID": str(TENANT_ID)}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def get(self, endpoint: str, params: Dict = None) -> requests.Response:
        """GET request"""
        url = f"{self.base_url}{endpoint}"
        return requests.get(url, params=params, headers=self._headers())

    def post(self, endpoint: str, data: Dict = None, params: Dict = None) -> requests.Response:
        """POST request, params go to the query string"""
        url = f"{self.base_url}{endpoint}"
        return requests.post(url, json=data, params=params, headers=self._headers())

    def put(self, endpoint: str, data: Dict = None) -> requests.Response:
        """PUT request"""
        url = f"{self.base_url}{endpoint}"
        return requests.put(url, json=data, headers=self._headers())

    def delete(self, endpoint: str) -> requests.Response:
        """DELETE request"""
        url = f"{self.base_url}{endpoint}"
        return requests.delete(url, headers=self._headers())


class TestResult:
    """Track test results"""

    __test__ = False

    def __init__(self):
        self.passed = 0
        self.failed = 0
        self.skipped = 0

    def add_pass(self, name: str):
        self.passed += 1
        print_test(name, True)

    def add_fail(self, name: str, message: str = ""):
        self.failed += 1
        print_test(name, False, message)

    def add_skip(self, name: str, reason: str = ""):
        self.skipped += 1
        print(f"  {Colors.YELLOW}⊘ SKIP{Colors.END} - {name}")
        if reason:
            print(f"       {Colors.YELLOW}{reason}{Colors.END}")

    def summary(self):
        """Print test summary"""
        total = self.passed + self.failed + self.skipped
        print(f"\n{Colors.BOLD}{'='*60}{Colors.END}")
        print(f"{Colors.BOLD}  TEST SUMMARY{Colors.END}")
        print(f"{'='*60}")
        print(f"  Total:   {total}")
        print(f"  {Colors.GREEN}Passed:  {self.passed}{Colors.END}")
        print(f"  {Colors.RED}Failed:  {self.failed}{Colors.END}")
        print(f"  {Colors.YELLOW}Skipped: {self.skipped}{Colors.END}")
        print(f"{'='*60}\n")

        if self.failed == 0:
            print(f"{Colors.GREEN}{Colors.BOLD}All tests passed! ✓{Colors.END}\n")
        else:
            print(f"{Colors.RED}{Colors.BOLD}Some tests failed! ✗{Colors.END}\n")

        return self.failed == 0


def assert_status(response: requests.Response, expected: int, result: TestResult, test_name: str) -> bool:
    """Assert response status code"""
    if response.status_code == expected:
        result.add_pass(test_name)
        return True
    else:
        result.add_fail(test_name, f"Expected {expected}, got {response.status_code}: {response.text[:200]}")
        return False


def error_code(response: requests.Response) -> Optional[str]:
    """error_code from the {"detail": {"error_code", "message"}} envelope"""
    try:
        detail = response.json().get("detail")
    except ValueError:
        return None
    return detail.get("error_code") if isinstance(detail, dict) else None


def assert_error(response: requests.Response, expected_status: int, expected_code: str,
                 result: TestResult, test_name: str) -> bool:
    """Assert an error response carries the expected status and error_code"""
    code = error_code(response)
    if response.status_code == expected_status and code == expected_code:
        result.add_pass(test_name)
        return True
    result.add_fail(
        test_name,
        f"Expected {expected_status} {expected_code}, got {response.status_code} {code}: {response.text[:200]}",
    )
    return False


def check(result: TestResult, test_name: str, condition: bool, message: str = "") -> bool:
    if condition:
        result.add_pass(test_name)
    else:
        result.add_fail(test_name, message)
    return condition
