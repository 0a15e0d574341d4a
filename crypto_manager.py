"""Ed25519 signing utilities for blocks produced by the authority node."""

from __future__ import annotations

from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519


class CryptoManager:
    """签名管理器，负责出块签名与校验 / Block signing for the authority node."""

    @staticmethod
    def generate_signature_keypair() -> Tuple[ed25519.Ed25519PrivateKey, bytes]:
        """生成Ed25519签名密钥对 / Generate an Ed25519 signing key pair."""
        private_key = ed25519.Ed25519PrivateKey.generate()
        return private_key, CryptoManager.public_bytes(private_key)

    @staticmethod
    def public_bytes(private_key: ed25519.Ed25519PrivateKey) -> bytes:
        return private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @staticmethod
    def sign_block_hash(block_hash: str, signing_private: ed25519.Ed25519PrivateKey) -> str:
        """对区块哈希签名，返回十六进制 / Sign a block hash, hex-encoded."""
        return signing_private.sign(bytes.fromhex(block_hash)).hex()

    @staticmethod
    def verify_block_signature(signature_hex: str, block_hash: str, signing_public_bytes: bytes) -> bool:
        """验证出块签名，返回是否有效."""
        try:
            public_key = ed25519.Ed25519PublicKey.from_public_bytes(signing_public_bytes)
            public_key.verify(bytes.fromhex(signature_hex), bytes.fromhex(block_hash))
            return True
        except (InvalidSignature, ValueError, TypeError):
            return False
