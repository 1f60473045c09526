"""
Credit Balance (decrement side).

Balances are held in coins; one generation costs COINS_PER_GENERATION.
The decrement is a single conditional UPDATE inside a Postgres function
(see sql/schema.sql) so two concurrent requests for the last 100 coins can't
both succeed. Application code never does read-then-write on the balance.
"""

import logging
import threading
from typing import Optional, Protocol

from supabase import Client

from ..errors import StorageError

logger = logging.getLogger(__name__)

COINS_PER_GENERATION = 100


class CreditLedger(Protocol):
    def decrement_if_sufficient(self, owner_id: str, amount: int, job_ref: Optional[str] = None) -> bool: ...

    def get_balance(self, owner_id: str) -> int: ...


class SupabaseCreditLedger:
    def __init__(self, client: Client):
        self.sb = client

    def decrement_if_sufficient(self, owner_id: str, amount: int, job_ref: Optional[str] = None) -> bool:
        """
        Atomically take `amount` coins from the owner's balance.

        Returns False when the balance is too low (nothing changes).
        Raises StorageError when the ledger can't be reached.
        """
        try:
            result = self.sb.rpc(
                "decrement_credits_if_sufficient",
                {"p_user_id": owner_id, "p_amount": amount},
            ).execute()
        except Exception as e:
            raise StorageError(f"credit decrement failed for user {owner_id}: {e}") from e

        new_balance = result.data
        if isinstance(new_balance, list):
            new_balance = new_balance[0] if new_balance else None
        if new_balance is None:
            logger.info(f"Insufficient credits for user {owner_id} (needs {amount})")
            return False

        # Audit trail only; the balance itself is already settled
        try:
            self.sb.table("credit_transactions").insert({
                "user_id": owner_id,
                "amount": -amount,
                "balance_after": new_balance,
                "reason": "generation",
                "metadata": {"type": "video_generate", "ref": job_ref},
            }).execute()
        except Exception as e:
            logger.error(f"Failed to record credit transaction for user {owner_id}: {e}")

        logger.info(f"Charged {amount} coins to user {owner_id}, balance now {new_balance}")
        return True

    def get_balance(self, owner_id: str) -> int:
        try:
            result = self.sb.table("credits").select("credits").eq("user_id", owner_id).limit(1).execute()
        except Exception as e:
            raise StorageError(f"credit read failed for user {owner_id}: {e}") from e
        if not result.data:
            return 0
        return int(result.data[0].get("credits") or 0)


class InMemoryCreditLedger:
    def __init__(self, balances: Optional[dict[str, int]] = None):
        self._balances: dict[str, int] = dict(balances or {})
        self._lock = threading.Lock()

    def set_balance(self, owner_id: str, coins: int):
        with self._lock:
            self._balances[owner_id] = coins

    def decrement_if_sufficient(self, owner_id: str, amount: int, job_ref: Optional[str] = None) -> bool:
        with self._lock:
            balance = self._balances.get(owner_id, 0)
            if balance < amount:
                return False
            self._balances[owner_id] = balance - amount
            return True

    def get_balance(self, owner_id: str) -> int:
        with self._lock:
            return self._balances.get(owner_id, 0)
