#!/usr/bin/env python3
"""Deployment smoke test: readiness endpoint and, with a token, the sync state.

Usage:
    python scripts/verify_deployment.py --backend-url https://api.example.com
    python scripts/verify_deployment.py --backend-url https://api.example.com --token <jwt>

Exit code 0 if all checks pass, 1 if any fail.
"""

import argparse
import sys
from typing import Tuple

import httpx

TIMEOUT = 15.0


def check_health(url: str) -> Tuple[bool, str]:
    """Verify /health/ready returns HTTP 200 with status ready."""
    health_url = url.rstrip("/") + "/health/ready"
    try:
        response = httpx.get(health_url, timeout=TIMEOUT, follow_redirects=True)
        try:
            data = response.json()
        except ValueError:
            return False, f"HTTP {response.status_code}, response is not valid JSON"

        if response.status_code == 200 and data.get("status") == "ready":
            checks = data.get("checks", {})
            disabled = [name for name, value in checks.items() if value == "disabled"]
            if disabled:
                return True, f"Ready (disabled: {', '.join(disabled)})"
            return True, "All checks healthy"

        checks = data.get("checks", {})
        failed = [name for name, value in checks.items() if value == "error"]
        if failed:
            return False, f"Degraded: {', '.join(failed)}"
        return False, f"HTTP {response.status_code}, status: {data.get('status', 'unknown')}"

    except httpx.TimeoutException:
        return False, "Request timed out"
    except httpx.ConnectError as exc:
        return False, f"Connection failed: {exc}"
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"


def check_sync_state(url: str, token: str) -> Tuple[bool, str]:
    """Verify the authenticated user's last calendar sync succeeded."""
    state_url = url.rstrip("/") + "/api/v1/calendar/sync-state"
    try:
        response = httpx.get(
            state_url,
            timeout=TIMEOUT,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code == 404:
            return False, "No sync has run for this user yet"
        if response.status_code != 200:
            return False, f"HTTP {response.status_code}"

        data = response.json()
        status = data.get("last_sync_status")
        if status == "success":
            return True, f"Last sync at {data.get('last_sync_at')}"
        return False, f"Last sync {status}: {data.get('last_sync_error')}"

    except httpx.TimeoutException:
        return False, "Request timed out"
    except httpx.ConnectError as exc:
        return False, f"Connection failed: {exc}"
    except httpx.HTTPError as exc:
        return False, f"HTTP error: {exc}"


def print_results(results: list) -> None:
    """Print a formatted table of check results."""
    header = f"{'CHECK':<25} {'STATUS':<10} {'DETAIL'}"
    separator = "-" * 70
    print()
    print(separator)
    print(header)
    print(separator)
    for name, passed, detail in results:
        status = "PASS" if passed else "FAIL"
        print(f"{name:<25} {status:<10} {detail}")
    print(separator)
    print()


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify a tracker deployment")
    parser.add_argument("--backend-url", required=True, help="URL of the backend API")
    parser.add_argument("--token", help="Access token of a user whose sync state to check")
    args = parser.parse_args()

    results = []

    passed, detail = check_health(args.backend_url)
    results.append(("Readiness", passed, detail))

    if args.token:
        passed, detail = check_sync_state(args.backend_url, args.token)
        results.append(("Calendar sync state", passed, detail))

    print_results(results)

    all_passed = all(passed for _, passed, _ in results)
    if all_passed:
        print("All checks passed.")
    else:
        print("Some checks FAILED.")

    sys.exit(0 if all_passed else 1)


if __name__ == "__main__":
    main()
