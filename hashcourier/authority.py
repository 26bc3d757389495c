# hashcourier/authority.py
# ╭────────────────────────────────────────────────────────────────────╮
# │ HTTP boundary to the remote authority and the fee-address          │
# │ allocator. Every call has an explicit timeout; failures surface as │
# │ AuthorityError and are never retried here.                         │
# ╰────────────────────────────────────────────────────────────────────╯

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter

from hashcourier.config import (
    ALLOCATE_TIMEOUT_S,
    CHALLENGE_TIMEOUT_S,
    HTTP_POOL_SIZE,
    RATES_TIMEOUT_S,
    SEED_TIMEOUT_S,
    SUBMIT_TIMEOUT_S,
)
from hashcourier.miner.errors import AuthorityError
from hashcourier.protocol import Allocation, ChallengePoll, SubmissionResponse
from hashcourier.utils.helpers import as_int

USER_AGENT = "hashcourier/1.0"


def _session(session: Optional[requests.Session]) -> requests.Session:
    if session is not None:
        return session
    s = requests.Session()
    s.headers.update({
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": USER_AGENT,
    })
    # retries are explicit and paced by the callers
    adapter = HTTPAdapter(pool_connections=HTTP_POOL_SIZE, pool_maxsize=HTTP_POOL_SIZE, max_retries=0)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    return s


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or resp.reason or "")[:200] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if msg:
            return str(msg)
    return f"HTTP {resp.status_code}"


def _json(resp: requests.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError as e:
        raise AuthorityError(f"invalid JSON from {resp.url}", resp.status_code) from e


class _HttpClient:
    def __init__(self, session: Optional[requests.Session] = None):
        self.session = _session(session)

    def _request(self, method: str, url: str, timeout: float, **kw) -> requests.Response:
        try:
            resp = self.session.request(method, url, timeout=timeout, **kw)
        except requests.RequestException as e:
            raise AuthorityError(f"{method} {url} failed: {e}") from e
        if not resp.ok:
            raise AuthorityError(_error_message(resp), resp.status_code)
        return resp

    def close(self) -> None:
        self.session.close()


class AuthorityClient(_HttpClient):
    """
    REST client for the mining authority:
      GET  /challenge
      POST /solution/{address}/{challenge_id}/{nonce}
      GET  /work_to_star_rate
      POST /register/{address}/{signature}/{public_key}
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        super().__init__(session)
        self.base_url = base_url.rstrip("/")

    def fetch_challenge(self) -> Optional[ChallengePoll]:
        """Current challenge, or None when the authority reports no active one."""
        data = _json(self._request("GET", f"{self.base_url}/challenge", CHALLENGE_TIMEOUT_S))
        if not isinstance(data, dict):
            raise AuthorityError("challenge response is not an object")
        code = data.get("code")
        if code is not None and code != "active":
            return None
        poll = ChallengePoll.from_payload(data)
        if not poll.challenge_id:
            return None
        return poll

    def submit_solution(self, address: str, challenge_id: str, nonce: str) -> SubmissionResponse:
        url = f"{self.base_url}/solution/{address}/{challenge_id}/{nonce}"
        data = _json(self._request("POST", url, SUBMIT_TIMEOUT_S, json={}))
        if not isinstance(data, dict):
            return SubmissionResponse(accepted=True)
        return SubmissionResponse(
            accepted=True,
            message=str(data.get("message") or ""),
            crypto_receipt=data.get("crypto_receipt"),
        )

    def fetch_rates(self) -> List[int]:
        data = _json(self._request("GET", f"{self.base_url}/work_to_star_rate", RATES_TIMEOUT_S))
        if not isinstance(data, list):
            raise AuthorityError("rate response is not a list")
        return [as_int(x, 0) for x in data]

    def fetch_challenge_export(self, url: str) -> List[Dict[str, Any]]:
        """Exported ledger entries from another instance (`{challenges: [...]}`)."""
        data = _json(self._request("GET", url, SEED_TIMEOUT_S))
        if isinstance(data, dict):
            data = data.get("challenges")
        if not isinstance(data, list):
            raise AuthorityError("seed source returned no challenge list")
        return [c for c in data if isinstance(c, dict)]

    def register(self, address: str, signature: str, public_key: str) -> Dict[str, Any]:
        url = f"{self.base_url}/register/{address}/{signature}/{public_key}"
        data = _json(self._request("POST", url, SUBMIT_TIMEOUT_S, json={}))
        return data if isinstance(data, dict) else {}


class FeeAllocationClient(_HttpClient):
    """Allocator for fee-pool addresses: POST {clientId, clientType}."""

    def __init__(self, api_url: str, session: Optional[requests.Session] = None):
        super().__init__(session)
        self.api_url = api_url

    def allocate(self, client_id: str) -> Allocation:
        payload = {"clientId": client_id, "clientType": "desktop"}
        data = _json(self._request("POST", self.api_url, ALLOCATE_TIMEOUT_S, json=payload))
        if not isinstance(data, dict) or not data.get("devAddress"):
            raise AuthorityError("allocation response carried no address")
        return Allocation(
            address=str(data["devAddress"]),
            address_index=as_int(data.get("devAddressIndex"), -1),
            is_new_assignment=bool(data.get("isNewAssignment", False)),
        )
