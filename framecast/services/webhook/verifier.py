"""Verification of signed webhook envelopes.

An envelope carries three base64url strings: `header` (JSON with the account
`fid` and the signer `key`), `payload` and `signature`. The signature is an
Ed25519 detached signature over the literal string `header + "." + payload`.

Verification runs in two phases:

1. Cryptographic check (always): structure, header, key and signature.
2. Key-registry check (only when an RPC endpoint is configured): the signer key
   must be registered and active for the fid on the on-chain KeyRegistry.

Without an RPC endpoint the verifier still accepts correctly signed envelopes
but reports `VerificationMode.SIGNATURE_ONLY` so callers can tell the two
outcomes apart.
"""

import base64
import binascii
import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

import httpx
from Crypto.Hash import keccak
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from framecast.common.config import settings
from framecast.common.logging import logger


SIGNATURE_LENGTH_BYTES = 64
PUBKEY_LENGTH_BYTES = 32
KEY_STATE_ADDED = 1
KEY_TYPE_ED25519 = 1
MAX_FID = 2**256 - 1


class VerificationMode(str, Enum):
    """How far an accepted envelope was verified."""

    FULL = "full"
    SIGNATURE_ONLY = "signature_only"


class SignatureVerificationError(ValueError):
    """Base class for every verification failure."""


class InvalidStructure(SignatureVerificationError):
    pass


class InvalidHeader(SignatureVerificationError):
    pass


class InvalidSignatureLength(SignatureVerificationError):
    pass


class InvalidKeyFormat(SignatureVerificationError):
    pass


class SignatureInvalid(SignatureVerificationError):
    """The Ed25519 check itself failed."""


class InactiveKey(SignatureVerificationError):
    """The registry does not list the key as an active signer for the fid."""


class KeyRegistryError(SignatureVerificationError):
    """The registry lookup failed or returned something unexpected."""


def decode_base64url(data: str) -> bytes:
    """Decode base64url, accepting omitted padding and the standard alphabet."""

    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def decode_json_part(data: str) -> Any:
    """Decode one base64url-encoded JSON envelope part."""

    return json.loads(decode_base64url(data))


def is_valid_fid(fid: Any) -> bool:
    """Account ids are uint256 on chain; JSON booleans and floats are not ids."""

    return isinstance(fid, int) and not isinstance(fid, bool) and 0 <= fid <= MAX_FID


def decode_signer_key(key: Any) -> bytes:
    """Turn a `0x`-prefixed hex key into 32 raw public key bytes."""

    if not isinstance(key, str) or not key.startswith("0x"):
        raise InvalidKeyFormat("Invalid app key format - must start with 0x")
    try:
        raw = bytes.fromhex(key[2:])
    except ValueError as exc:
        raise InvalidKeyFormat(f"Invalid app key format: {exc}") from exc
    if len(raw) != PUBKEY_LENGTH_BYTES:
        raise InvalidKeyFormat(f"Invalid app key format - expected {PUBKEY_LENGTH_BYTES} bytes, got {len(raw)}")
    return raw


def _function_selector(signature: str) -> bytes:
    return keccak.new(digest_bits=256, data=signature.encode("ascii")).digest()[:4]


KEY_DATA_OF_SELECTOR = _function_selector("keyDataOf(uint256,bytes)")


def encode_key_data_of_call(fid: int, key: bytes) -> str:
    """ABI-encode `keyDataOf(uint256 fid, bytes key)` calldata as a 0x hex string."""

    padded_key = key + b"\x00" * (-len(key) % 32)
    calldata = (
        KEY_DATA_OF_SELECTOR
        + fid.to_bytes(32, "big")
        + (64).to_bytes(32, "big")
        + len(key).to_bytes(32, "big")
        + padded_key
    )
    return "0x" + calldata.hex()


class KeyRegistryClient:
    """Minimal JSON-RPC reader for the KeyRegistry `keyDataOf` view."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout: float = 5.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.contract_address = contract_address
        self.timeout = timeout
        self.http_client = http_client

    def _post(self, body: dict) -> httpx.Response:
        if self.http_client is not None:
            return self.http_client.post(self.rpc_url, json=body)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.rpc_url, json=body)

    def key_data_of(self, fid: int, key: bytes) -> tuple[int, int]:
        """Return `(state, key_type)` for the signer key of `fid`."""

        body = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_call",
            "params": [
                {"to": self.contract_address, "data": encode_key_data_of_call(fid, key)},
                "latest",
            ],
        }
        try:
            resp = self._post(body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as exc:
            raise KeyRegistryError(f"Key registry request failed: {exc}") from exc
        except ValueError as exc:
            raise KeyRegistryError("Key registry response is not JSON") from exc

        if not isinstance(payload, dict):
            raise KeyRegistryError("Key registry response malformed")
        if payload.get("error"):
            raise KeyRegistryError(f"Key registry call reverted: {payload['error']}")
        result = payload.get("result")
        if not isinstance(result, str) or not result.startswith("0x"):
            raise KeyRegistryError("Key registry result missing")
        try:
            raw = bytes.fromhex(result[2:])
        except ValueError as exc:
            raise KeyRegistryError("Key registry result is not hex") from exc
        if len(raw) < 64:
            raise KeyRegistryError(f"Key registry result too short ({len(raw)} bytes)")
        return int.from_bytes(raw[0:32], "big"), int.from_bytes(raw[32:64], "big")


class SignatureVerifier:
    """Two-phase verifier; the registry phase runs only when a client is configured."""

    def __init__(self, registry: KeyRegistryClient | None = None) -> None:
        self.registry = registry

    @classmethod
    def from_settings(cls) -> "SignatureVerifier":
        registry = None
        if settings.rpc_url:
            registry = KeyRegistryClient(
                settings.rpc_url,
                settings.key_registry_address,
                timeout=settings.rpc_timeout_seconds,
            )
        return cls(registry)

    def verify(self, envelope: Mapping[str, Any]) -> VerificationMode:
        """Verify a signed envelope or raise a `SignatureVerificationError`."""

        header_b64 = envelope.get("header")
        payload_b64 = envelope.get("payload")
        signature_b64 = envelope.get("signature")
        if not all(isinstance(part, str) and part for part in (header_b64, payload_b64, signature_b64)):
            raise InvalidStructure("Invalid signature data structure")

        try:
            header = decode_json_part(header_b64)
        except (binascii.Error, ValueError) as exc:
            raise InvalidHeader(f"Error decoding and parsing header: {exc}") from exc
        if not isinstance(header, dict) or "fid" not in header or "key" not in header:
            raise InvalidHeader("Error decoding and parsing header: Invalid header structure")
        fid = header["fid"]
        if not is_valid_fid(fid):
            raise InvalidHeader(f"Invalid fid in header: {fid!r}")

        try:
            signature = decode_base64url(signature_b64)
        except (binascii.Error, ValueError) as exc:
            raise InvalidSignatureLength("Invalid signature length: signature is not base64url") from exc
        if len(signature) != SIGNATURE_LENGTH_BYTES:
            raise InvalidSignatureLength(f"Invalid signature length: {len(signature)} bytes")

        key = decode_signer_key(header["key"])
        try:
            public_key = Ed25519PublicKey.from_public_bytes(key)
        except ValueError as exc:
            raise InvalidKeyFormat(f"Invalid app key format: {exc}") from exc

        signed_input = f"{header_b64}.{payload_b64}".encode("utf-8")
        try:
            public_key.verify(signature, signed_input)
        except InvalidSignature as exc:
            raise SignatureInvalid("Signature verification failed") from exc

        if self.registry is None:
            logger.warning("signature_verified_without_key_registry fid=%s reason=rpc_url_not_configured", fid)
            return VerificationMode.SIGNATURE_ONLY

        state, key_type = self.registry.key_data_of(fid, key)
        if state != KEY_STATE_ADDED or key_type != KEY_TYPE_ED25519:
            raise InactiveKey(f"Key is not an active signer for fid {fid} (state={state}, type={key_type})")
        return VerificationMode.FULL
