"""
Solana JSON-RPC client.

- lookup_transaction(): fetch a transaction by signature and reduce it to what
  payment verification needs (success flag, fee payer, net lamports received by
  the treasury, slot and confirmation depth).
- prepare_transfer() / submit_transfer() / transfer_state(): treasury refunds,
  signed locally so the signature can be stored before it is sent.

Only the HTTP JSON-RPC surface is used; signing goes through solders.
"""
from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

logger = logging.getLogger(__name__)

TRANSFER_FEE_LAMPORTS = 5000


class ChainRpcError(Exception):
    pass


class InsufficientTreasuryBalance(ChainRpcError):
    pass


@dataclass(frozen=True)
class ChainTransaction:
    signature: str
    success: bool
    sender_address: Optional[str]
    lamports_to_treasury: int
    slot: int
    confirmations: int


class TransferState(str, Enum):
    confirmed = "confirmed"
    failed = "failed"
    pending = "pending"
    expired = "expired"


@dataclass(frozen=True)
class PreparedTransfer:
    signature: str
    raw: str  # base64 wire transaction
    last_valid_block_height: int


def load_keypair(secret: str) -> Keypair:
    """Accepts either a JSON byte array ("[1,2,...]") or a base58 secret key."""
    secret = secret.strip()
    if secret.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(secret)))
    return Keypair.from_base58_string(secret)


def _account_keys(tx: Dict[str, Any]) -> List[str]:
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = [k if isinstance(k, str) else k.get("pubkey", "") for k in message.get("accountKeys") or []]
    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    keys.extend(loaded.get("writable") or [])
    keys.extend(loaded.get("readonly") or [])
    return keys


class SolanaRpcClient:
    def __init__(
        self,
        rpc_url: str,
        treasury_wallet: str,
        *,
        treasury_secret: Optional[str] = None,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        if not treasury_wallet:
            raise ValueError("SOLANA_TREASURY_WALLET not configured")
        self.rpc_url = rpc_url
        self.treasury_wallet = treasury_wallet
        self.commitment = commitment
        self.timeout = timeout
        self.session = session or requests.Session()
        self._keypair: Optional[Keypair] = None
        if treasury_secret:
            try:
                self._keypair = load_keypair(treasury_secret)
            except ValueError:
                logger.warning("invalid treasury private key; refunds disabled")

    @property
    def can_sign(self) -> bool:
        return self._keypair is not None

    def _rpc(self, method: str, params: list) -> Any:
        try:
            resp = self.session.post(
                self.rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.exceptions.RequestException as e:
            raise ChainRpcError(f"rpc_request_failed: {e}") from e
        except ValueError as e:
            raise ChainRpcError(f"rpc_invalid_json: {e}") from e

        if data.get("error"):
            err = data["error"]
            raise ChainRpcError(err.get("message", "rpc_error") if isinstance(err, dict) else str(err))
        return data.get("result")

    # ---------------------------
    # READS
    # ---------------------------

    def get_slot(self) -> int:
        return int(self._rpc("getSlot", [{"commitment": self.commitment}]))

    def get_balance(self, address: str) -> int:
        result = self._rpc("getBalance", [address, {"commitment": self.commitment}])
        return int((result or {}).get("value", 0))

    def lookup_transaction(self, signature: str) -> Optional[ChainTransaction]:
        """
        Returns None when the cluster does not know the signature.
        """
        tx = self._rpc(
            "getTransaction",
            [
                signature.strip(),
                {
                    "encoding": "json",
                    "commitment": self.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if tx is None:
            return None

        meta = tx.get("meta") or {}
        keys = _account_keys(tx)
        sender = keys[0] if keys else None

        received = 0
        if self.treasury_wallet in keys:
            idx = keys.index(self.treasury_wallet)
            pre = meta.get("preBalances") or []
            post = meta.get("postBalances") or []
            if idx < len(pre) and idx < len(post):
                received = int(post[idx]) - int(pre[idx])

        slot = int(tx.get("slot") or 0)
        confirmations = max(0, self.get_slot() - slot) if slot else 0

        return ChainTransaction(
            signature=signature.strip(),
            success=meta.get("err") is None,
            sender_address=sender,
            lamports_to_treasury=received,
            slot=slot,
            confirmations=confirmations,
        )

    def get_block_height(self) -> int:
        return int(self._rpc("getBlockHeight", [{"commitment": self.commitment}]))

    # ---------------------------
    # WRITES
    # ---------------------------

    def prepare_transfer(self, recipient: str, lamports: int) -> PreparedTransfer:
        """
        Sign a treasury -> `recipient` transfer without sending it.

        The signature is known before submission, so callers can record it and
        later ask the cluster about it instead of signing a second transfer.
        """
        if self._keypair is None:
            raise ChainRpcError("Treasury keypair not configured for transfers")

        balance = self.get_balance(str(self._keypair.pubkey()))
        if balance < lamports + TRANSFER_FEE_LAMPORTS:
            raise InsufficientTreasuryBalance(
                f"treasury balance {balance} lamports < required {lamports + TRANSFER_FEE_LAMPORTS}"
            )

        latest = self._rpc("getLatestBlockhash", [{"commitment": self.commitment}])["value"]
        ix = transfer(
            TransferParams(
                from_pubkey=self._keypair.pubkey(),
                to_pubkey=Pubkey.from_string(recipient),
                lamports=int(lamports),
            )
        )
        msg = Message([ix], self._keypair.pubkey())
        tx = Transaction([self._keypair], msg, Hash.from_string(latest["blockhash"]))
        return PreparedTransfer(
            signature=str(tx.signatures[0]),
            raw=base64.b64encode(bytes(tx)).decode("ascii"),
            last_valid_block_height=int(latest["lastValidBlockHeight"]),
        )

    def submit_transfer(self, prepared: PreparedTransfer) -> None:
        self._rpc(
            "sendTransaction",
            [prepared.raw, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        logger.info("treasury transfer sent", extra={"signature": prepared.signature})

    def transfer_state(self, signature: str, last_valid_block_height: Optional[int] = None) -> TransferState:
        """
        One status check. A signature the cluster has never seen is EXPIRED once
        the chain is past the blockhash's last valid height (it can no longer
        land), PENDING before that.
        """
        result = self._rpc("getSignatureStatuses", [[signature], {"searchTransactionHistory": True}])
        status = ((result or {}).get("value") or [None])[0]
        if status:
            if status.get("err") is not None:
                return TransferState.failed
            if status.get("confirmationStatus") in ("confirmed", "finalized"):
                return TransferState.confirmed
            return TransferState.pending
        if last_valid_block_height is not None and self.get_block_height() > last_valid_block_height:
            return TransferState.expired
        return TransferState.pending

    def await_transfer(
        self,
        signature: str,
        last_valid_block_height: Optional[int] = None,
        *,
        attempts: int = 30,
        delay: float = 1.0,
    ) -> TransferState:
        state = TransferState.pending
        for _ in range(attempts):
            state = self.transfer_state(signature, last_valid_block_height)
            if state != TransferState.pending:
                break
            time.sleep(delay)
        logger.info("treasury transfer checked", extra={"signature": signature, "state": state.value})
        return state
