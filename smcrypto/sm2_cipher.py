#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM2公钥加密算法
遵循GB/T 32918.4-2016

加密: C1 = k*G，(x2, y2) = k*P，t = KDF(x2 || y2, klen)
      C2 = M xor t，C3 = SM3(x2 || M || y2)
密文排列为 C1||C3||C2（默认）或 C1||C2||C3，可选ASN.1 DER封装
"""

import hmac
import logging
import random
from dataclasses import dataclass
from typing import Optional, Tuple

from smcrypto import asn1
from smcrypto.ecc import (
    COORD_LEN, check_point, decode_point, encode_point, multiply_base,
    point_multiply
)
from smcrypto.errors import (
    IntegrityError, MalformedCiphertext, RNGExhausted
)
from smcrypto.sm2_keys import (
    PrivateKeyLike, PublicKeyLike, as_private_key, as_public_key, random_scalar
)
from smcrypto.sm3 import sm3_hash, sm3_kdf
from smcrypto.utils import default_rng, int_to_bytes, xor_bytes

logger = logging.getLogger(__name__)

C1C3C2 = 1
C1C2C3 = 0
DEFAULT_LAYOUT = C1C3C2

C1_LEN = 2 * COORD_LEN + 1
C3_LEN = 32

MAX_RETRIES = 64


@dataclass
class CipherOptions:
    layout: int = DEFAULT_LAYOUT
    asn1: bool = False


def _check_layout(layout: int):
    if layout not in (C1C3C2, C1C2C3):
        raise ValueError(f"不支持的密文排列方式: {layout}")


def _shared(point, k_or_d: int) -> Tuple[bytes, bytes]:
    x2, y2 = point_multiply(point, k_or_d)
    return int_to_bytes(x2), int_to_bytes(y2)


def encrypt(plaintext: bytes, public_key: PublicKeyLike,
            options: Optional[CipherOptions] = None,
            rng: Optional[random.Random] = None) -> bytes:
    """
    SM2加密

    :param plaintext: 明文，可以为空
    :param public_key: 接收方公钥
    :param options: 密文排列与ASN.1封装
    :param rng: 随机数源，默认为进程级SystemRandom
    """
    options = options or CipherOptions()
    _check_layout(options.layout)
    pub = as_public_key(public_key)
    plaintext = bytes(plaintext)
    rng = rng or default_rng()

    for _ in range(MAX_RETRIES):
        k = random_scalar(rng)
        c1 = multiply_base(k)
        x2, y2 = _shared(pub.point, k)
        t = sm3_kdf(x2 + y2, len(plaintext))
        if plaintext and not any(t):
            logger.debug("KDF输出全0，重新选取k")
            continue
        c2 = xor_bytes(plaintext, t)
        c3 = sm3_hash(x2 + plaintext + y2)
        break
    else:
        raise RNGExhausted(f"加密连续{MAX_RETRIES}次KDF输出全0")

    if options.asn1:
        if options.layout == C1C3C2:
            return asn1.encode_ciphertext(c1[0], c1[1], c3, c2)
        return asn1.encode_ciphertext(c1[0], c1[1], c2, c3)

    c1_bytes = encode_point(c1)
    if options.layout == C1C3C2:
        return c1_bytes + c3 + c2
    return c1_bytes + c2 + c3


def _split(ciphertext: bytes, options: CipherOptions):
    """拆分出 (C1点, C2, C3)"""
    if options.asn1:
        x, y, first, second = asn1.decode_ciphertext(ciphertext)
        if options.layout == C1C3C2:
            c3, c2 = first, second
        else:
            c2, c3 = first, second
        if len(c3) != C3_LEN:
            raise MalformedCiphertext(f"C3长度{len(c3)}错误，应当为{C3_LEN}字节")
        return check_point((x, y)), c2, c3

    if len(ciphertext) < C1_LEN + C3_LEN:
        raise MalformedCiphertext(f"密文长度{len(ciphertext)}过短，至少{C1_LEN + C3_LEN}字节")
    if ciphertext[0] != 0x04:
        raise MalformedCiphertext("C1必须为非压缩点编码")
    c1 = decode_point(ciphertext[:C1_LEN])
    body = ciphertext[C1_LEN:]
    if options.layout == C1C3C2:
        return c1, body[C3_LEN:], body[:C3_LEN]
    return c1, body[:-C3_LEN], body[-C3_LEN:]


def decrypt(ciphertext: bytes, private_key: PrivateKeyLike,
            options: Optional[CipherOptions] = None) -> bytes:
    """
    SM2解密

    C3校验失败时抛出IntegrityError，不返回任何明文
    """
    options = options or CipherOptions()
    _check_layout(options.layout)
    priv = as_private_key(private_key)
    c1, c2, c3 = _split(bytes(ciphertext), options)

    x2, y2 = _shared(c1, priv.d)
    t = sm3_kdf(x2 + y2, len(c2))
    if c2 and not any(t):
        raise IntegrityError("KDF输出全0，密文无效")
    plaintext = xor_bytes(c2, t)

    if not hmac.compare_digest(sm3_hash(x2 + plaintext + y2), c3):
        logger.debug("C3校验失败")
        raise IntegrityError("密文完整性校验失败")
    return plaintext
