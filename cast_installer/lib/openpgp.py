"""Detached OpenPGP signature verification (RFC 4880 subset).

Only what release signatures need: ASCII armor, v4 public-key packets
(RSA and EdDSA/Ed25519) and v4 binary/text signature packets. Cryptographic
operations are delegated to ``cryptography``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import struct
from dataclasses import dataclass
from typing import List, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa, utils
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from ..errors import SignatureError

logger = logging.getLogger(__name__)

TAG_SIGNATURE = 2
TAG_PUBLIC_KEY = 6

ALGO_RSA = (1, 3)
ALGO_EDDSA = 22

SIG_BINARY = 0x00
SIG_TEXT = 0x01

ED25519_OID = bytes.fromhex("2b06010401da470f01")

HASHES = {
    2: hashes.SHA1,
    8: hashes.SHA256,
    9: hashes.SHA384,
    10: hashes.SHA512,
    11: hashes.SHA224,
}

_CRC24_INIT = 0xB704CE
_CRC24_POLY = 0x1864CFB


def crc24(data: bytes) -> int:
    crc = _CRC24_INIT
    for b in data:
        crc ^= b << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= _CRC24_POLY
    return crc & 0xFFFFFF


def dearmor(text: str) -> Tuple[str, bytes]:
    """Return ``(block type, body)`` of the first armored block in ``text``."""

    lines = [ln.strip() for ln in text.replace("\r\n", "\n").split("\n")]
    start = None
    block_type = ""
    for i, ln in enumerate(lines):
        if ln.startswith("-----BEGIN ") and ln.endswith("-----"):
            start = i
            block_type = ln[len("-----BEGIN ") : -len("-----")]
            break
    if start is None:
        raise SignatureError("no armored block found")

    body_lines: List[str] = []
    checksum = None
    in_headers = True
    for ln in lines[start + 1 :]:
        if ln.startswith("-----END "):
            break
        if in_headers:
            if ln == "":
                in_headers = False
                continue
            if ":" in ln:
                continue
            in_headers = False
        if ln.startswith("=") and len(ln) == 5:
            checksum = ln[1:]
            continue
        if ln:
            body_lines.append(ln)
    else:
        raise SignatureError(f"unterminated armored block: {block_type}")

    try:
        body = base64.b64decode("".join(body_lines), validate=True)
    except (binascii.Error, ValueError) as e:
        raise SignatureError(f"invalid armor encoding: {e}") from e

    if checksum is not None:
        try:
            expected = int.from_bytes(base64.b64decode(checksum, validate=True), "big")
        except (binascii.Error, ValueError) as e:
            raise SignatureError(f"invalid armor checksum: {e}") from e
        if crc24(body) != expected:
            raise SignatureError("armor checksum mismatch")

    return block_type, body


def read_packet(data: bytes, offset: int = 0) -> Tuple[int, bytes, int]:
    """Read one packet at ``offset``; return ``(tag, body, next offset)``."""

    if offset >= len(data):
        raise SignatureError("unexpected end of packet data")
    hdr = data[offset]
    if not hdr & 0x80:
        raise SignatureError("invalid packet header")
    pos = offset + 1

    if hdr & 0x40:
        tag = hdr & 0x3F
        if pos >= len(data):
            raise SignatureError("truncated packet length")
        first = data[pos]
        if first < 192:
            length, pos = first, pos + 1
        elif first < 224:
            if pos + 1 >= len(data):
                raise SignatureError("truncated packet length")
            length, pos = ((first - 192) << 8) + data[pos + 1] + 192, pos + 2
        elif first == 255:
            if pos + 5 > len(data):
                raise SignatureError("truncated packet length")
            length, pos = struct.unpack(">I", data[pos + 1 : pos + 5])[0], pos + 5
        else:
            raise SignatureError("partial body lengths are not supported")
    else:
        tag = (hdr >> 2) & 0x0F
        length_type = hdr & 0x03
        if length_type == 3:
            length = len(data) - pos
        else:
            size = (1, 2, 4)[length_type]
            if pos + size > len(data):
                raise SignatureError("truncated packet length")
            length = int.from_bytes(data[pos : pos + size], "big")
            pos += size

    end = pos + length
    if end > len(data):
        raise SignatureError("truncated packet body")
    return tag, data[pos:end], end


def _read_mpi(data: bytes, pos: int) -> Tuple[int, int]:
    if pos + 2 > len(data):
        raise SignatureError("truncated MPI")
    bits = struct.unpack(">H", data[pos : pos + 2])[0]
    size = (bits + 7) // 8
    pos += 2
    if pos + size > len(data):
        raise SignatureError("truncated MPI")
    return int.from_bytes(data[pos : pos + size], "big"), pos + size


@dataclass(frozen=True)
class PublicKey:
    algorithm: int
    material: Tuple[int, ...]
    key_id: str

    def to_crypto(self) -> Union[rsa.RSAPublicKey, Ed25519PublicKey]:
        """Return the ``cryptography`` key object for this key material."""

        if self.algorithm in ALGO_RSA:
            n, e = self.material
            return rsa.RSAPublicNumbers(e, n).public_key()
        point = self.material[0].to_bytes(33, "big")
        if point[0] != 0x40:
            raise SignatureError("invalid Ed25519 public point")
        return Ed25519PublicKey.from_public_bytes(point[1:])


@dataclass(frozen=True)
class Signature:
    sig_type: int
    algorithm: int
    hash_algorithm: int
    hashed: bytes
    left16: bytes
    values: Tuple[int, ...]


def parse_public_key(body: bytes) -> PublicKey:
    if len(body) < 6 or body[0] != 4:
        raise SignatureError("only v4 public keys are supported")
    algo = body[5]
    pos = 6
    if algo in ALGO_RSA:
        n, pos = _read_mpi(body, pos)
        e, pos = _read_mpi(body, pos)
        material: Tuple[int, ...] = (n, e)
    elif algo == ALGO_EDDSA:
        oid_len = body[pos]
        oid = body[pos + 1 : pos + 1 + oid_len]
        if oid != ED25519_OID:
            raise SignatureError("unsupported EdDSA curve")
        point, pos = _read_mpi(body, pos + 1 + oid_len)
        material = (point,)
    else:
        raise SignatureError(f"unsupported public key algorithm: {algo}")

    h = hashes.Hash(hashes.SHA1())
    h.update(b"\x99" + struct.pack(">H", len(body)) + body)
    key_id = h.finalize()[-8:].hex().upper()
    return PublicKey(algorithm=algo, material=material, key_id=key_id)


def parse_signature(body: bytes) -> Signature:
    if len(body) < 6 or body[0] != 4:
        raise SignatureError("only v4 signatures are supported")
    sig_type, algo, hash_algo = body[1], body[2], body[3]
    hashed_len = struct.unpack(">H", body[4:6])[0]
    pos = 6 + hashed_len
    if pos + 2 > len(body):
        raise SignatureError("truncated signature packet")
    hashed = body[: pos]
    unhashed_len = struct.unpack(">H", body[pos : pos + 2])[0]
    pos += 2 + unhashed_len
    if pos + 2 > len(body):
        raise SignatureError("truncated signature packet")
    left16 = body[pos : pos + 2]
    pos += 2

    values: List[int] = []
    count = 1 if algo in ALGO_RSA else 2
    for _ in range(count):
        v, pos = _read_mpi(body, pos)
        values.append(v)
    return Signature(
        sig_type=sig_type,
        algorithm=algo,
        hash_algorithm=hash_algo,
        hashed=hashed,
        left16=left16,
        values=tuple(values),
    )


def load_public_key(armored: str) -> PublicKey:
    block_type, body = dearmor(armored)
    if block_type != "PGP PUBLIC KEY BLOCK":
        raise SignatureError("not an armored public key")
    tag, packet_body, _ = read_packet(body)
    if tag != TAG_PUBLIC_KEY:
        raise SignatureError("invalid public key")
    return parse_public_key(packet_body)


def load_signature(armored: str) -> Signature:
    block_type, body = dearmor(armored)
    if block_type != "PGP SIGNATURE":
        raise SignatureError("not an armored signature or message")
    tag, packet_body, _ = read_packet(body)
    if tag != TAG_SIGNATURE:
        raise SignatureError("not a valid signature file")
    return parse_signature(packet_body)


def _canonical_text(data: bytes) -> bytes:
    return data.replace(b"\r\n", b"\n").replace(b"\n", b"\r\n")


def signature_digest(sig: Signature, data: bytes) -> Tuple[bytes, hashes.HashAlgorithm]:
    hash_cls = HASHES.get(sig.hash_algorithm)
    if hash_cls is None:
        raise SignatureError(f"unsupported hash algorithm: {sig.hash_algorithm}")
    if sig.sig_type == SIG_TEXT:
        data = _canonical_text(data)
    elif sig.sig_type != SIG_BINARY:
        raise SignatureError(f"unsupported signature type: {sig.sig_type:#x}")

    algo = hash_cls()
    h = hashes.Hash(algo)
    h.update(data)
    h.update(sig.hashed)
    h.update(b"\x04\xff" + struct.pack(">I", len(sig.hashed)))
    return h.finalize(), algo


def verify_detached(data: bytes, signature_armored: str, public_key_armored: str) -> str:
    """Verify an armored detached signature over ``data``.

    Returns the signing key id. Raises ``SignatureError`` on any failure.
    """

    sig = load_signature(signature_armored)
    key = load_public_key(public_key_armored)

    if sig.algorithm != key.algorithm and not (sig.algorithm in ALGO_RSA and key.algorithm in ALGO_RSA):
        raise SignatureError("signature algorithm does not match public key")

    digest, algo = signature_digest(sig, data)
    if digest[:2] != sig.left16:
        raise SignatureError("signature hash prefix mismatch")

    try:
        pub = key.to_crypto()
        if isinstance(pub, rsa.RSAPublicKey):
            size = (pub.key_size + 7) // 8
            raw = sig.values[0].to_bytes(size, "big")
            pub.verify(raw, digest, padding.PKCS1v15(), utils.Prehashed(algo))
        else:
            r, s = sig.values
            pub.verify(r.to_bytes(32, "big") + s.to_bytes(32, "big"), digest)
    except InvalidSignature as e:
        raise SignatureError("signature verification failed") from e
    except (ValueError, OverflowError) as e:
        raise SignatureError(f"malformed signature: {e}") from e

    logger.debug("Signature made by key %s", key.key_id)
    return key.key_id
