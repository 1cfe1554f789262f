"""
Utility functions for the SkillSwap realtime service.
"""

import hmac
import hashlib
import logging

logger = logging.getLogger(__name__)


def thread_key(user_a: str, user_b: str) -> str:
    """
    Derive the conversation key for two users.

    The pair is sorted before joining, so (A, B) and (B, A) give the same key.
    Ids must not contain "-", otherwise two pairs could share a key;
    ChatMessageEvent rejects such ids before anything is stored.
    """
    return "-".join(sorted([user_a, user_b]))


def compute_hmac_signature(body: bytes, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of body using secret."""
    return hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Signed bytes (raw webhook body, or the encoded user id)
        signature: Hex-encoded signature from the request
        secret: Shared key for this kind of signature

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying HMAC signature over {len(body)} bytes")

    if not signature:
        return False

    expected_signature = compute_hmac_signature(body, secret)

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.debug(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def verify_user_signature(user_id: str, signature: str, secret: str) -> bool:
    """Check an identity token issued by the auth service for user_id."""
    if not user_id:
        return False
    return verify_hmac_signature(user_id.encode("utf-8"), signature, secret)
