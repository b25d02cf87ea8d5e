"""
Sign-In With Solana messages.

A wallet proves control of an address by signing a plain-text message of the
form::

    sion.example wants you to sign in with your Solana account:
    <base58 address>

    <optional statement>

    URI: https://sion.example
    Nonce: <nonce>
    Issued At: <ISO-8601>
    Expiration Time: <ISO-8601>
    Resources:
    - <uri>

Blocks are separated by blank lines. Only the header, the address and the
nonce are required.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey
from solders.pubkey import Pubkey
from solders.signature import Signature

HEADER = re.compile(r"^(?P<domain>\S+) wants you to sign in with your Solana (?:account|address):$", re.IGNORECASE)
FIELD = re.compile(r"^(?P<name>[A-Z][A-Za-z ]*?):(?: (?P<value>.*))?$")


@dataclass
class SolanaSignInMessage:
    domain: str
    address: str
    nonce: str
    statement: Optional[str] = None
    uri: Optional[str] = None
    issued_at: Optional[str] = None
    expiration_time: Optional[str] = None
    resources: List[str] = field(default_factory=list)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if not self.expiration_time:
            return False
        try:
            expires = datetime.fromisoformat(self.expiration_time.replace("Z", "+00:00"))
        except ValueError:
            # unreadable expiry counts as expired
            return True
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires <= (now or datetime.now(timezone.utc))


def parse_address(value: str) -> Pubkey:
    """Base58 ed25519 public key; ``ValueError`` if it is not one."""
    return Pubkey.from_string(value.strip())


def parse_solana_signin_message(message: str) -> SolanaSignInMessage:
    blocks = [block.strip("\n") for block in message.replace("\r\n", "\n").strip().split("\n\n")]
    head = blocks[0].splitlines()
    header = HEADER.match(head[0].strip()) if head else None
    if header is None:
        raise ValueError("Not a Solana sign-in message")
    if len(head) < 2:
        raise ValueError("Sign-in message has no address")
    address = head[1].strip()
    parse_address(address)

    body = blocks[1:]
    field_block: List[str] = []
    if body and FIELD.match(body[-1].splitlines()[0].strip()):
        field_block = body.pop().splitlines()
    statement = "\n\n".join(body).strip() or None

    fields: Dict[str, str] = {}
    resources: List[str] = []
    in_resources = False
    for line in (raw.strip() for raw in field_block):
        if in_resources and line.startswith("- "):
            resources.append(line[2:].strip())
            continue
        match = FIELD.match(line)
        if match is None:
            continue
        name = match.group("name").lower().replace(" ", "_")
        in_resources = name == "resources"
        if not in_resources:
            fields[name] = (match.group("value") or "").strip()

    if not fields.get("nonce"):
        raise ValueError("Sign-in message has no nonce")

    return SolanaSignInMessage(
        domain=header.group("domain"),
        address=address,
        nonce=fields["nonce"],
        statement=statement,
        uri=fields.get("uri"),
        issued_at=fields.get("issued_at"),
        expiration_time=fields.get("expiration_time"),
        resources=resources,
    )


def decode_signature(signature: str) -> bytes:
    """Wallets hand back base58 (Phantom, Solflare) or base64 signatures."""
    candidate = signature.strip()
    if not candidate:
        raise ValueError("Signature is empty")
    try:
        return bytes(Signature.from_string(candidate))
    except ValueError:
        return _decode_base64_signature(candidate)


def _decode_base64_signature(candidate: str) -> bytes:
    try:
        raw = base64.b64decode(candidate, validate=True)
    except (ValueError, binascii.Error) as exc:
        raise ValueError("Signature is neither base58 nor base64") from exc
    if len(raw) != 64:
        raise ValueError("Signature must be 64 bytes")
    return raw


def verify_solana_signature(message: str, signature: str, address: str) -> None:
    """Raise ``ValueError`` unless ``signature`` is ``address``'s signature of ``message``."""
    verify_key = VerifyKey(bytes(parse_address(address)))
    try:
        verify_key.verify(message.encode("utf-8"), decode_signature(signature))
    except BadSignatureError as exc:
        raise ValueError("Signature does not match the wallet") from exc
