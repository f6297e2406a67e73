"""Sign and send one subscription webhook to a running webhook service.

Signs with a throwaway Ed25519 key unless `--private-key` supplies a 32-byte
hex seed. A throwaway key only passes verification when the service runs
without an RPC URL (signature-only mode).
"""

import argparse
import base64
import json

import httpx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def build_envelope(private_key: Ed25519PrivateKey, fid: int, event: str, url: str | None, token: str | None) -> dict:
    """Header/payload/signature triple signed over `header.payload`."""

    public_key = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    header = {"fid": fid, "type": "app_key", "key": "0x" + public_key.hex()}
    payload: dict = {"event": event}
    if url and token:
        payload["notificationDetails"] = {"url": url, "token": token}
    encoded_header = b64url(json.dumps(header).encode("utf-8"))
    encoded_payload = b64url(json.dumps(payload).encode("utf-8"))
    signature = private_key.sign(f"{encoded_header}.{encoded_payload}".encode("utf-8"))
    return {"header": encoded_header, "payload": encoded_payload, "signature": b64url(signature)}


def main() -> None:
    parser = argparse.ArgumentParser(description="Send a signed test webhook.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--fid", type=int, default=1)
    parser.add_argument(
        "--event",
        default="frame_added",
        choices=["frame_added", "frame_removed", "notifications_enabled", "notifications_disabled"],
    )
    parser.add_argument("--url", default="http://localhost:9000/notify", help="Notification delivery URL")
    parser.add_argument("--token", default="test-token")
    parser.add_argument("--private-key", default=None, help="Hex-encoded 32-byte Ed25519 seed")
    args = parser.parse_args()

    if args.private_key:
        private_key = Ed25519PrivateKey.from_private_bytes(bytes.fromhex(args.private_key.removeprefix("0x")))
    else:
        private_key = Ed25519PrivateKey.generate()

    envelope = build_envelope(private_key, args.fid, args.event, args.url, args.token)
    resp = httpx.post(f"{args.base_url}/webhook", json=envelope, timeout=10.0)
    print(f"status={resp.status_code}")
    print(resp.text)


if __name__ == "__main__":
    main()
