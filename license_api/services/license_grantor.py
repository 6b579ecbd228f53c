# coding: utf-8
"""
License Grantor

Extends time-limited licenses on the license ledger. The production ledger is
a NEAR contract exposing:
- grant_license(account_id, duration_days)   admin-only, extends from
  max(now, current expiry)
- get_expiry(account_id) -> Option<u64>      expiry in nanoseconds

Transactions are built and signed locally (Borsh + Ed25519) and submitted
through NEAR JSON-RPC with broadcast_tx_commit.
"""
import asyncio
import base64
import hashlib
import json
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Any, Dict, List, Optional

import aiohttp
import base58
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from loguru import logger

from config.billing import LedgerSettings


GRANT_METHOD = "grant_license"
EXPIRY_METHOD = "get_expiry"
DEFAULT_GAS = 30_000_000_000_000  # 30 TGas
NO_DEPOSIT = 0

ED25519_KEY_TYPE = 0
FUNCTION_CALL_ACTION = 2

# RPC error cause when broadcast_tx_commit gave up waiting; the tx may still land
BROADCAST_TIMEOUT_CAUSE = "TIMEOUT_ERROR"


class NearRpcError(Exception):
    """JSON-RPC error reported by the NEAR node"""

    def __init__(self, message: str, cause: Optional[str] = None):
        super().__init__(message)
        self.cause = cause


@dataclass(frozen=True)
class LicenseGrantResult:
    success: bool
    reference: Optional[str] = None  # transaction hash
    error: Optional[str] = None


class LicenseGrantor(ABC):
    """Interface of the license ledger used by the billing engine."""

    @abstractmethod
    async def extend(self, account_id: str, duration_days: int) -> LicenseGrantResult:
        """
        Extend an account's license by duration_days

        Never raises for ledger failures; they are reported in the result.
        """


# ===========================
# BORSH SERIALIZATION
# ===========================


def _u8(value: int) -> bytes:
    return struct.pack("<B", value)


def _u32(value: int) -> bytes:
    return struct.pack("<I", value)


def _u64(value: int) -> bytes:
    return struct.pack("<Q", value)


def _u128(value: int) -> bytes:
    return value.to_bytes(16, "little")


def _string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return _u32(len(encoded)) + encoded


def _bytes(value: bytes) -> bytes:
    return _u32(len(value)) + value


@dataclass(frozen=True)
class FunctionCall:
    method_name: str
    args: bytes
    gas: int = DEFAULT_GAS
    deposit: int = NO_DEPOSIT

    def serialize(self) -> bytes:
        return (
            _u8(FUNCTION_CALL_ACTION)
            + _string(self.method_name)
            + _bytes(self.args)
            + _u64(self.gas)
            + _u128(self.deposit)
        )


def serialize_transaction(
    signer_id: str,
    public_key: bytes,
    nonce: int,
    receiver_id: str,
    block_hash: bytes,
    actions: List[FunctionCall],
) -> bytes:
    """Borsh encoding of a NEAR Transaction."""
    if len(public_key) != 32:
        raise ValueError("Ed25519 public key must be 32 bytes")
    if len(block_hash) != 32:
        raise ValueError("Block hash must be 32 bytes")

    parts = [
        _string(signer_id),
        _u8(ED25519_KEY_TYPE) + public_key,
        _u64(nonce),
        _string(receiver_id),
        block_hash,
        _u32(len(actions)),
    ]
    parts.extend(action.serialize() for action in actions)
    return b"".join(parts)


def sign_transaction(transaction: bytes, private_key: Ed25519PrivateKey) -> bytes:
    """SignedTransaction: transaction followed by the Ed25519 signature of its sha256."""
    digest = hashlib.sha256(transaction).digest()
    signature = private_key.sign(digest)
    return transaction + _u8(ED25519_KEY_TYPE) + signature


def transaction_hash(transaction: bytes) -> str:
    """Hash the network assigns to a transaction (base58 of its sha256)."""
    return base58.b58encode(hashlib.sha256(transaction).digest()).decode("ascii")


# ===========================
# KEYS
# ===========================


@dataclass(frozen=True)
class NearKeyPair:
    private_key: Ed25519PrivateKey
    public_key: bytes

    @property
    def public_key_str(self) -> str:
        return "ed25519:" + base58.b58encode(self.public_key).decode("ascii")

    @classmethod
    def from_string(cls, key: str) -> "NearKeyPair":
        """
        Parse "ed25519:<base58>" (64-byte secret+public or 32-byte seed)

        Raises:
            ValueError: malformed key, or public half does not match the seed
        """
        raw = key.strip()
        if raw.startswith("ed25519:"):
            raw = raw[len("ed25519:"):]
        if not raw:
            raise ValueError("NEAR private key is empty")

        decoded = base58.b58decode(raw)
        if len(decoded) not in (32, 64):
            raise ValueError(f"Invalid private key length: {len(decoded)}")

        private_key = Ed25519PrivateKey.from_private_bytes(decoded[:32])
        public_key = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)

        if len(decoded) == 64 and decoded[32:] != public_key:
            raise ValueError("Private key public half does not match its seed")

        return cls(private_key=private_key, public_key=public_key)


# ===========================
# NEAR CONTRACT GRANTOR
# ===========================


class NearLicenseGrantor(LicenseGrantor):
    """
    License ledger backed by the NEAR license contract

    Usage:
        async with NearLicenseGrantor(settings.ledger) as grantor:
            result = await grantor.extend("alice.near", 30)
    """

    def __init__(
        self,
        settings: LedgerSettings,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.settings = settings
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "NearLicenseGrantor":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds)
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _rpc(self, method: str, params: Any) -> Dict[str, Any]:
        """
        One JSON-RPC call (FastNEAR key sent as bearer token)

        Raises:
            NearRpcError: RPC-level error or HTTP failure
        """
        if self._session is None:
            raise RuntimeError("NearLicenseGrantor used outside of 'async with'")

        headers = {"Content-Type": "application/json"}
        if self.settings.fastnear_api_key:
            headers["Authorization"] = f"Bearer {self.settings.fastnear_api_key}"

        payload = {"jsonrpc": "2.0", "id": "license-api", "method": method, "params": params}

        async with self._session.post(
            self.settings.rpc_url,
            json=payload,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
        ) as response:
            if response.status >= 400:
                raise NearRpcError(f"NEAR RPC HTTP {response.status}")
            data = await response.json(content_type=None)

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            cause = error.get("cause", {}).get("name") if isinstance(error, dict) else None
            raise NearRpcError(f"NEAR RPC error: {message}" + (f" ({cause})" if cause else ""), cause=cause)

        return data.get("result") or {}

    async def _get_access_key(self, key_pair: NearKeyPair) -> Dict[str, Any]:
        return await self._rpc(
            "query",
            {
                "request_type": "view_access_key",
                "finality": "final",
                "account_id": self.settings.signer_account_id,
                "public_key": key_pair.public_key_str,
            },
        )

    async def _lookup_transaction(self, tx_hash: str, account_id: str) -> Optional[Dict[str, Any]]:
        """
        Final status of a transaction whose broadcast gave no answer

        Returns:
            The same result shape as broadcast_tx_commit, or None when the
            node cannot tell (the grant may still land)
        """
        logger.warning(f"⚠️ Broadcast for {account_id} returned no outcome, checking tx {tx_hash}")
        try:
            return await self._rpc(
                "tx",
                {
                    "tx_hash": tx_hash,
                    "sender_account_id": self.settings.signer_account_id,
                    "wait_until": "EXECUTED",
                },
            )
        except (NearRpcError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                f"❌ License grant outcome UNKNOWN for {account_id}, tx {tx_hash}: "
                f"{type(e).__name__}: {e}. Reconcile against the ledger before the next sweep"
            )
            return None

    async def extend(self, account_id: str, duration_days: int) -> LicenseGrantResult:
        """
        Call grant_license on the contract and wait for the outcome

        Args:
            account_id: Licensee NEAR account
            duration_days: Days to add (from max(now, current expiry))

        Returns:
            LicenseGrantResult with the transaction hash on success
        """
        try:
            key_pair = NearKeyPair.from_string(self.settings.private_key)

            access_key = await self._get_access_key(key_pair)
            nonce = int(access_key["nonce"]) + 1
            block_hash = base58.b58decode(access_key["block_hash"])

            args = json.dumps(
                {"account_id": account_id, "duration_days": duration_days},
                separators=(",", ":"),
            ).encode("utf-8")

            transaction = serialize_transaction(
                signer_id=self.settings.signer_account_id,
                public_key=key_pair.public_key,
                nonce=nonce,
                receiver_id=self.settings.contract_id,
                block_hash=block_hash,
                actions=[FunctionCall(method_name=GRANT_METHOD, args=args)],
            )
            signed = sign_transaction(transaction, key_pair.private_key)
            tx_hash = transaction_hash(transaction)

            try:
                result = await self._rpc(
                    "broadcast_tx_commit", [base64.b64encode(signed).decode("ascii")]
                )
            except (aiohttp.ClientError, asyncio.TimeoutError, NearRpcError) as e:
                if isinstance(e, NearRpcError) and e.cause != BROADCAST_TIMEOUT_CAUSE:
                    raise
                result = await self._lookup_transaction(tx_hash, account_id)
                if result is None:
                    return LicenseGrantResult(
                        success=False,
                        reference=tx_hash,
                        error=f"Grant outcome unknown ({type(e).__name__}), tx {tx_hash}",
                    )

            tx_hash = (result.get("transaction") or {}).get("hash") or tx_hash
            status = result.get("status") or {}
            if "Failure" in status:
                return LicenseGrantResult(
                    success=False,
                    reference=tx_hash,
                    error=f"Transaction failed: {json.dumps(status['Failure'])[:300]}",
                )

            logger.success(f"🎫 License granted to {account_id} for {duration_days} days, tx: {tx_hash}")
            return LicenseGrantResult(success=True, reference=tx_hash)

        except (NearRpcError, aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            logger.error(f"❌ Failed to grant license to {account_id}: {type(e).__name__}: {e}")
            return LicenseGrantResult(success=False, error=str(e) or type(e).__name__)

    async def get_license_expiry(self, account_id: str) -> Optional[datetime]:
        """
        Current license expiry of an account (view call, no signing)

        Returns:
            Expiry as UTC datetime, or None when the account never had a license
        """
        args = json.dumps({"account_id": account_id}).encode("utf-8")
        result = await self._rpc(
            "query",
            {
                "request_type": "call_function",
                "finality": "final",
                "account_id": self.settings.contract_id,
                "method_name": EXPIRY_METHOD,
                "args_base64": base64.b64encode(args).decode("ascii"),
            },
        )

        raw = bytes(result.get("result") or [])
        value = json.loads(raw.decode("utf-8")) if raw else None
        if value is None:
            return None
        return datetime.fromtimestamp(int(value) / 1_000_000_000, tz=UTC)
