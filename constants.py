"""Shared constants for the anonymous ledger voting pipeline.

所有可调参数的默认值集中在此，`config.PipelineConfig` 可通过环境变量覆盖。
"""

# —— 椭圆曲线 / Ring signature curve ——
CURVE_NAME: str = "secp256k1"
HASH_TO_CURVE_DOMAIN: bytes = b"ledger-vote/hash-to-curve/v1"
HASH_TO_CURVE_ATTEMPTS: int = 256  # 拒绝采样的安全上限，实际中从不触达
RING_CHALLENGE_DOMAIN: bytes = b"ledger-vote/ring-challenge/v1"
MIN_RING_SIZE: int = 2

# —— RSA 盲签名 / Blind signature authority ——
RSA_PUBLIC_EXPONENT: int = 65537
DEFAULT_RSA_BITS: int = 2048
MIN_RSA_BITS: int = 1024
BLINDING_FACTOR_ATTEMPTS: int = 10
BLIND_SESSION_TTL: float = 15 * 60.0  # seconds

# —— Paillier ——
DEFAULT_PAILLIER_BITS: int = 2048
MIN_PAILLIER_BITS: int = 128
PRIME_PAIR_ATTEMPTS: int = 32  # phe primes only fix the top bit, so n can come out one bit short
MILLER_RABIN_ROUNDS: int = 40
COPRIME_SEARCH_ATTEMPTS: int = 64
KEYPAIR_VALIDATION_ATTEMPTS: int = 3

# 仅供不安全测试模式使用的梅森素数对 (2^127 - 1, 2^107 - 1)
INSECURE_TEST_PRIMES: tuple = (2**127 - 1, 2**107 - 1)

# —— 选票有效性证明 / Ballot validity proofs ——
VOTE_PROOF_DOMAIN: str = "ledger-vote/ballot-proof/v1"
PROOF_CHALLENGE_BITS: int = 128

# —— 门限解密 / Threshold decryption ——
DEFAULT_SHARE_COUNT: int = 3
DEFAULT_SHARE_THRESHOLD: int = 2

# —— Mixnet ——
MIXNET_MIN_BATCH_SIZE: int = 3
MIXNET_MAX_WAIT: float = 120.0  # seconds before a partial batch is force-released
MIXNET_TICK_INTERVAL: float = 30.0

# —— Ledger / authority scheduler ——
BLOCK_INTERVAL: float = 2.0
SYNC_INTERVAL: float = 60.0
BALLOT_MAX_AGE: float = 60 * 60.0  # freshness window for submitted ballots
BALLOT_MAX_CLOCK_SKEW: float = 30.0
GENESIS_PREVIOUS_HASH: str = "0" * 64
GENESIS_TIMESTAMP: float = 0.0
