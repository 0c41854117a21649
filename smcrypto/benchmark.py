#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
性能测试：SM2签名/验签/加解密，SM3和SM4吞吐

    python -m smcrypto.benchmark [轮数]
"""

import logging
import sys
import time
from typing import Dict

from smcrypto.modes import SM4Options, sm4_decrypt, sm4_encrypt
from smcrypto.sm2_cipher import decrypt, encrypt
from smcrypto.sm2_keys import generate_key_pair
from smcrypto.sm2_sign import (
    PointPool, SignOptions, VerifyOptions, precompute_public_key, sign, verify
)
from smcrypto.sm3 import sm3_hash

logger = logging.getLogger(__name__)


def _timeit(func, rounds: int) -> float:
    start = time.perf_counter()
    for _ in range(rounds):
        func()
    return time.perf_counter() - start


def run_benchmark(rounds: int = 100) -> Dict[str, float]:
    """执行各项测试，返回 {项目: 总耗时秒数}"""
    key_pair = generate_key_pair()
    message = b"Test message for performance evaluation"
    data = bytes(1024)
    sm4_key = bytes(range(16))

    signature = sign(message, key_pair.private)
    table = precompute_public_key(key_pair.public)
    pool = PointPool(rounds)
    ciphertext = encrypt(message, key_pair.public)
    sm4_opts = SM4Options(mode="cbc", iv=bytes(16))
    sm4_ct = sm4_encrypt(data, sm4_key, sm4_opts)

    results = {
        "sign": _timeit(lambda: sign(message, key_pair.private), rounds),
        "sign_pool": _timeit(lambda: sign(message, key_pair.private,
                                          SignOptions(point_pool=pool)), rounds),
        "verify": _timeit(lambda: verify(message, signature, key_pair.public), rounds),
        "verify_table": _timeit(lambda: verify(message, signature, key_pair.public,
                                               VerifyOptions(public_table=table)), rounds),
        "encrypt": _timeit(lambda: encrypt(message, key_pair.public), rounds),
        "decrypt": _timeit(lambda: decrypt(ciphertext, key_pair.private), rounds),
        "sm3_1k": _timeit(lambda: sm3_hash(data), rounds),
        "sm4_cbc_1k": _timeit(lambda: sm4_encrypt(data, sm4_key, sm4_opts), rounds),
    }

    # 功能正确性
    if not verify(message, signature, key_pair.public):
        raise RuntimeError("签名验证失败")
    if decrypt(ciphertext, key_pair.private) != message:
        raise RuntimeError("解密结果不一致")
    if sm4_decrypt(sm4_ct, sm4_key, sm4_opts) != data:
        raise RuntimeError("SM4解密结果不一致")
    logger.debug("性能测试完成，轮数%d", rounds)
    return results


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    rounds = int(argv[0]) if argv else 100
    results = run_benchmark(rounds)
    print(f"SM2/SM3/SM4性能测试（{rounds}轮）:")
    for name, seconds in results.items():
        print(f"{name:>14}: {seconds:.6f}秒  ({seconds / rounds * 1000:.3f}毫秒/次)")
    print("功能验证通过!")


if __name__ == "__main__":
    main()
