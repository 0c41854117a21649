#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM2数字签名算法
遵循GB/T 32918.2-2016

签名: e = SM3(Z || M)
      k ∈ [1, n-1]，(x1, y1) = k*G
      r = (e + x1) mod n，r = 0或r + k = n时重选k
      s = ((1 + d)^-1 * (k - r*d)) mod n，s = 0时重选k
验签: t = (r + s) mod n，(x1', y1') = s*G + t*P，R = (e + x1') mod n == r
"""

import logging
import random
import threading
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Union

from smcrypto import asn1
from smcrypto.ecc import (
    COORD_LEN, FN, Gx, Gy, JacobianPoint, a, b, multiply_add_public,
    multiply_base, n, precompute_table
)
from smcrypto.errors import MalformedSignature, RNGExhausted
from smcrypto.sm2_keys import (
    PrivateKeyLike, PublicKey, PublicKeyLike, as_private_key, as_public_key,
    random_scalar
)
from smcrypto.sm3 import sm3_hash
from smcrypto.utils import bytes_to_int, default_rng, int_to_bytes, utf8_to_bytes

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = b"1234567812345678"

# ENTL为16位比特长度
MAX_USER_ID_LEN = 0xFFFF // 8

MAX_RETRIES = 64

SIGNATURE_LEN = 2 * COORD_LEN

Message = Union[bytes, str]


def _message_bytes(message: Message) -> bytes:
    if isinstance(message, str):
        return utf8_to_bytes(message)
    return bytes(message)


def calculate_z(public_key: PublicKeyLike, user_id: Optional[bytes] = None) -> bytes:
    """计算SM2中的Z值 Z = SM3(ENTL || ID || a || b || Gx || Gy || Px || Py)"""
    pub = as_public_key(public_key)
    if user_id is None:
        user_id = DEFAULT_USER_ID
    user_id = _message_bytes(user_id)
    if len(user_id) > MAX_USER_ID_LEN:
        raise ValueError(f"用户ID过长（{len(user_id)}字节），最多{MAX_USER_ID_LEN}字节")

    entl = len(user_id) * 8
    data = (
        entl.to_bytes(2, byteorder='big') +
        user_id +
        int_to_bytes(a) +
        int_to_bytes(b) +
        int_to_bytes(Gx) +
        int_to_bytes(Gy) +
        int_to_bytes(pub.x) +
        int_to_bytes(pub.y)
    )
    return sm3_hash(data)


def get_hash(message: Message, public_key: PublicKeyLike, user_id: Optional[bytes] = None) -> bytes:
    """e = SM3(Z || M)"""
    return sm3_hash(calculate_z(public_key, user_id) + _message_bytes(message))


# ---------------- 预计算点池 ----------------

class PoolPoint(NamedTuple):
    """预先生成的 (k, x1)，其中 (x1, y1) = k*G"""
    k: int
    x1: int


def get_point(rng: Optional[random.Random] = None) -> PoolPoint:
    k = random_scalar(rng)
    x1, _ = multiply_base(k)
    return PoolPoint(k, x1)


class PointPool:
    """
    签名用的预计算点池

    每个点只能被take()取出一次，多个线程共享同一个池时也不会有k被重复使用。
    池空后签名退回到现场生成随机数。
    """

    def __init__(self, count: int = 0, rng: Optional[random.Random] = None):
        self._rng = rng
        self._points: List[PoolPoint] = []
        self._lock = threading.Lock()
        self.fill(count)

    def fill(self, count: int):
        points = [get_point(self._rng) for _ in range(count)]
        with self._lock:
            self._points.extend(points)

    def take(self) -> Optional[PoolPoint]:
        with self._lock:
            if not self._points:
                return None
            return self._points.pop()

    def __len__(self):
        with self._lock:
            return len(self._points)


def precompute_public_key(public_key: PublicKeyLike) -> List[JacobianPoint]:
    """为验签方的公钥预计算窗口表，同一公钥多次验签时复用"""
    return precompute_table(as_public_key(public_key).point)


# ---------------- 签名与验签 ----------------

@dataclass
class SignOptions:
    hash: bool = True
    der: bool = False
    user_id: Optional[bytes] = None
    point_pool: Optional[PointPool] = None


@dataclass
class VerifyOptions:
    hash: bool = True
    der: bool = False
    user_id: Optional[bytes] = None
    public_table: Optional[List[JacobianPoint]] = None


def _digest_int(message: Message, public_key: PublicKey, do_hash: bool, user_id: Optional[bytes]) -> int:
    if do_hash:
        return bytes_to_int(get_hash(message, public_key, user_id))
    return bytes_to_int(_message_bytes(message))


def sign(message: Message, private_key: PrivateKeyLike,
         options: Optional[SignOptions] = None,
         rng: Optional[random.Random] = None) -> bytes:
    """
    SM2签名

    :param message: 待签名消息；options.hash为False时视为已计算好的e
    :param private_key: 私钥
    :param options: 签名参数
    :param rng: 随机数源，默认为进程级SystemRandom
    :return: 64字节 r||s，或DER编码
    """
    options = options or SignOptions()
    priv = as_private_key(private_key)
    d = priv.d
    e = _digest_int(message, priv.public_key(), options.hash, options.user_id)
    rng = rng or default_rng()

    # (1 + d)^-1 与k无关，循环外计算
    inv_1d = FN.inv(1 + d)

    for _ in range(MAX_RETRIES):
        point = options.point_pool.take() if options.point_pool is not None else None
        if point is None:
            point = get_point(rng)
        k, x1 = point

        # 计算r = (e + x1) mod n
        r = (e + x1) % n
        if r == 0 or r + k == n:
            logger.debug("r不满足要求，重新选取k")
            continue

        # 计算s = ((1 + d)^-1 * (k - r*d)) mod n
        s = inv_1d * (k - r * d) % n
        if s == 0:
            logger.debug("s为0，重新选取k")
            continue

        if options.der:
            return asn1.encode_signature(r, s)
        return int_to_bytes(r) + int_to_bytes(s)

    raise RNGExhausted(f"签名连续{MAX_RETRIES}次未得到有效的(r, s)")


def _parse_signature(signature: bytes, der: bool):
    signature = bytes(signature)
    if der:
        return asn1.decode_signature(signature)
    if len(signature) != SIGNATURE_LEN:
        raise MalformedSignature(f"签名长度{len(signature)}错误，应当为{SIGNATURE_LEN}字节")
    return bytes_to_int(signature[:COORD_LEN]), bytes_to_int(signature[COORD_LEN:])


def verify(message: Message, signature: bytes, public_key: PublicKeyLike,
           options: Optional[VerifyOptions] = None) -> bool:
    """
    SM2验签

    签名格式错误时抛出MalformedSignature，签名无效时返回False
    """
    options = options or VerifyOptions()
    pub = as_public_key(public_key)
    r, s = _parse_signature(signature, options.der)

    # 检查r和s的范围
    if not (1 <= r <= n - 1 and 1 <= s <= n - 1):
        logger.debug("签名的r或s超出范围")
        return False

    e = _digest_int(message, pub, options.hash, options.user_id)

    # 计算t = (r + s) mod n
    t = (r + s) % n
    if t == 0:
        logger.debug("t为0，签名无效")
        return False

    # s*G + t*P，s和t都是公开值
    x1y1 = multiply_add_public(s, t, pub.point, options.public_table)
    if x1y1 is None:
        return False
    x1, _ = x1y1

    # 计算R = (e + x1) mod n
    R = (e + x1) % n
    if R != r:
        logger.debug("验签失败")
        return False
    return True
