"""
Cluster JSON-RPC client used by the monitor to see a validator's votes.
"""

import logging
import requests
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from thw_switchkit.toolkit.core.errors import ChainRpcError

logger = logging.getLogger(__name__)

# A validator counts as voting if its newest vote is this close to the tip (~1 minute)
VOTING_SLOT_WINDOW = 150
RECENT_VOTE_LIMIT = 31


@dataclass
class RecentVote:
    slot: int
    confirmation_count: int
    latency: int


@dataclass
class VoteData:
    vote_pubkey: str
    node_pubkey: str
    last_vote_slot: Optional[int]
    current_slot: int
    is_voting: bool
    recent_votes: List[RecentVote] = field(default_factory=list)
    activated_stake: int = 0
    commission: Optional[int] = None

    @property
    def recent_vote_slots(self) -> List[int]:
        return [vote.slot for vote in self.recent_votes]


def build_recent_votes(vote_slots: List[int], current_slot: int) -> List[RecentVote]:
    """Newest-first votes with the slot gap to the next newer vote (or the tip)."""
    newest_first = list(reversed(vote_slots))[:RECENT_VOTE_LIMIT]
    recent = []
    for i, slot in enumerate(newest_first):
        if i == 0:
            latency = max(current_slot - slot, 0)
        elif i < len(vote_slots) - 1:
            latency = max(newest_first[i - 1] - slot, 0)
        else:
            latency = 1
        recent.append(RecentVote(slot=slot, confirmation_count=i + 1, latency=latency))
    return recent


class ChainRpcClient:
    """
    JSON-RPC client for a single cluster endpoint.

    Connections are pooled on a ``requests`` session. Failed calls are retried
    by urllib3 for transient HTTP statuses only; everything else surfaces as
    ``ChainRpcError`` so the monitor can count it against the RPC channel.
    """

    def __init__(self, timeout: float = 3.0, max_retries: int = 1):
        """
        Args:
            timeout: Request timeout in seconds
            max_retries: Retries for 429/5xx responses
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = self._configure_session()

    def _configure_session(self) -> requests.Session:
        """Configure HTTP session with connection pooling and retries."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=0.2,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"]
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=4,
            pool_maxsize=16
        )

        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def call(self, rpc_url: str, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make one JSON-RPC call and return its ``result``.

        Raises:
            ChainRpcError: On transport failure, HTTP error or RPC error object
        """
        if not rpc_url:
            raise ChainRpcError("RPC URL is empty")

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params or []
        }

        try:
            response = self.session.post(
                rpc_url,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"RPC error with {rpc_url} calling {method}: {e}")
            raise ChainRpcError(f"{method} failed: {e}") from e

        if "error" in result:
            error = result["error"]
            raise ChainRpcError(f"{method} returned RPC error {error.get('code')}: {error.get('message')}")

        return result.get("result")

    def get_slot(self, rpc_url: str) -> int:
        return self.call(rpc_url, "getSlot")

    def find_vote_account(self, rpc_url: str, vote_pubkey: str) -> Dict[str, Any]:
        """Find ``vote_pubkey`` among the current and delinquent vote accounts."""
        accounts = self.call(rpc_url, "getVoteAccounts") or {}
        everything = accounts.get("current", []) + accounts.get("delinquent", [])
        for account in everything:
            if account.get("votePubkey") == vote_pubkey:
                return account
        raise ChainRpcError(
            f"Vote account {vote_pubkey} not found among {len(everything)} vote accounts. "
            f"Make sure the RPC endpoint is on the same cluster as the vote account."
        )

    def get_vote_slots(self, rpc_url: str, vote_pubkey: str) -> List[int]:
        """Slots of the vote account's lockout tower, oldest first."""
        result = self.call(rpc_url, "getAccountInfo", [vote_pubkey, {"encoding": "jsonParsed"}])
        try:
            votes = result["value"]["data"]["parsed"]["info"]["votes"]
            return [int(vote["slot"]) for vote in votes]
        except (KeyError, TypeError, ValueError) as e:
            raise ChainRpcError(f"Unexpected vote account data for {vote_pubkey}: {e}") from e

    def fetch_vote_data(self, rpc_url: str, vote_pubkey: str) -> VoteData:
        """Fetch what the cluster currently sees of a validator's voting."""
        account = self.find_vote_account(rpc_url, vote_pubkey)
        vote_slots = self.get_vote_slots(rpc_url, vote_pubkey)
        current_slot = self.get_slot(rpc_url)

        recent = build_recent_votes(vote_slots, current_slot)
        is_voting = bool(recent) and recent[0].latency < VOTING_SLOT_WINDOW
        last_vote_slot = recent[0].slot if recent else account.get("lastVote")

        return VoteData(
            vote_pubkey=vote_pubkey,
            node_pubkey=account.get("nodePubkey", ""),
            last_vote_slot=last_vote_slot,
            current_slot=current_slot,
            is_voting=is_voting,
            recent_votes=recent,
            activated_stake=account.get("activatedStake", 0),
            commission=account.get("commission"),
        )

    def close(self):
        self.session.close()
