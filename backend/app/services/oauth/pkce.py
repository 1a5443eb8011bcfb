"""PKCE (RFC 7636) 辅助函数"""
import base64
import hashlib
import secrets

CODE_CHALLENGE_METHOD = "S256"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """32 字节随机数的 base64url 编码（43 个字符，无填充）"""
    return _b64url(secrets.token_bytes(32))


def build_code_challenge(verifier: str) -> str:
    """S256: base64url(sha256(verifier))，无填充"""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
