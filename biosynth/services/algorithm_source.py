# biosynth/services/algorithm_source.py
import json
from typing import Any, Dict, Optional

import requests

HEADERS = {
    "Accept": "application/json",
    "User-Agent": "biosynth-jobs/1.0",
}

REQUEST_TIMEOUT = 15

LIST_FIELDS = ("steps", "applications", "tags")


def normalize_algorithm(algo: Dict[str, Any]) -> Dict[str, Any]:
    """
    Coerce list-valued fields stored as JSON text or comma-separated text.
    """
    normalized = dict(algo)

    if "pseudo_code" in normalized and "pseudoCode" not in normalized:
        normalized["pseudoCode"] = normalized.pop("pseudo_code")

    for field in LIST_FIELDS:
        value = normalized.get(field)
        if not isinstance(value, str):
            continue
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            normalized[field] = parsed
        else:
            normalized[field] = [s.strip() for s in value.split(",") if s.strip()]

    return normalized


class InMemoryAlgorithmSource:
    """Dict-backed catalogue for local mode and tests."""

    def __init__(self, algorithms: Optional[Dict[int, Dict[str, Any]]] = None):
        self._algorithms = dict(algorithms or {})

    def add(self, algorithmId: int, algorithm: Dict[str, Any]):
        self._algorithms[algorithmId] = algorithm

    def get_algorithm(self, algorithmId: int) -> Optional[Dict[str, Any]]:
        algo = self._algorithms.get(algorithmId)
        return normalize_algorithm(algo) if algo else None


class HttpAlgorithmSource:
    """
    Reads algorithms from the main backend.

    GET {base_url}/algorithms/{id} -> algorithm JSON, 404 when unknown.
    """

    def __init__(self, base_url: str, *, token: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.headers = dict(HEADERS)
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def get_algorithm(self, algorithmId: int) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}/algorithms/{algorithmId}"
        try:
            resp = self.session.get(url, headers=self.headers, timeout=REQUEST_TIMEOUT)
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
            return normalize_algorithm(resp.json())
        except requests.exceptions.RequestException as e:
            raise RuntimeError(f"Failed to fetch algorithm {algorithmId}: {e}")
