from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

from ..errors import SignatureError

logger = logging.getLogger(__name__)


def _decode_signature(raw: bytes) -> bytes:
    # cosign writes the signature base64 encoded; accept raw bytes too.
    try:
        return base64.b64decode(raw.strip(), validate=True)
    except (binascii.Error, ValueError):
        return raw


def verify_blob(key_path: Path, sig_path: Path, blob_path: Path) -> None:
    """Verify a cosign ``sign-blob`` signature offline (no transparency log)."""

    try:
        key_pem = Path(key_path).read_bytes()
        sig = _decode_signature(Path(sig_path).read_bytes())
        blob = Path(blob_path).read_bytes()
    except OSError as e:
        raise SignatureError(f"unable to read signature material: {e}") from e

    try:
        public_key = serialization.load_pem_public_key(key_pem)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise SignatureError(f"loading public key: {e}") from e

    try:
        if isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(sig, blob, ec.ECDSA(hashes.SHA256()))
        elif isinstance(public_key, ed25519.Ed25519PublicKey):
            public_key.verify(sig, blob)
        elif isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(sig, blob, padding.PKCS1v15(), hashes.SHA256())
        else:
            raise SignatureError(f"unsupported cosign key type: {type(public_key).__name__}")
    except InvalidSignature as e:
        raise SignatureError(f"invalid signature for {Path(blob_path).name}") from e

    logger.info("Signatures verified (component=cosign)")
