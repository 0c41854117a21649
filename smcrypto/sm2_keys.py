#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM2密钥管理
私钥为[1, n-1]内的整数d，公钥为Q = d*G
"""

import logging
import random
from typing import NamedTuple, Optional, Union

from smcrypto.ecc import (
    COORD_LEN, Point, check_point, check_scalar, decode_point, encode_point,
    multiply_base, n
)
from smcrypto.errors import InvalidPoint, InvalidScalar
from smcrypto.utils import default_rng, hex_to_bytes

logger = logging.getLogger(__name__)


class PublicKey:
    """SM2公钥，构造时校验点在曲线上且不是无穷远点"""

    __slots__ = ("_point",)

    def __init__(self, point: Point):
        self._point = check_point(point)

    @property
    def point(self) -> Point:
        return self._point

    @property
    def x(self) -> int:
        return self._point[0]

    @property
    def y(self) -> int:
        return self._point[1]

    def to_bytes(self, compressed: bool = False) -> bytes:
        return encode_point(self._point, compressed)

    def to_hex(self, compressed: bool = False) -> str:
        return self.to_bytes(compressed).hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "PublicKey":
        return cls(decode_point(data))

    @classmethod
    def from_hex(cls, hex_str: str) -> "PublicKey":
        return cls.from_bytes(hex_to_bytes(hex_str))

    def __eq__(self, other) -> bool:
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self._point == other._point

    def __hash__(self):
        return hash(self._point)

    def __repr__(self):
        return f"PublicKey({self.to_hex()})"


class PrivateKey:
    """SM2私钥"""

    __slots__ = ("_d", "_public")

    def __init__(self, d: int):
        self._d = check_scalar(d)
        self._public = None

    @property
    def d(self) -> int:
        return self._d

    def public_key(self) -> PublicKey:
        if self._public is None:
            self._public = PublicKey(multiply_base(self._d))
        return self._public

    def to_bytes(self) -> bytes:
        return self._d.to_bytes(COORD_LEN, 'big')

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "PrivateKey":
        if len(data) != COORD_LEN:
            raise InvalidScalar(f"私钥长度{len(data)}错误，应当为{COORD_LEN}字节")
        return cls(int.from_bytes(data, 'big'))

    @classmethod
    def from_hex(cls, hex_str: str) -> "PrivateKey":
        return cls.from_bytes(hex_to_bytes(hex_str))

    def __eq__(self, other) -> bool:
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self._d == other._d

    def __hash__(self):
        return hash(self._d)

    def __repr__(self):
        # 不输出私钥值
        return "PrivateKey(<hidden>)"


class KeyPair(NamedTuple):
    private: PrivateKey
    public: PublicKey


PublicKeyLike = Union[PublicKey, bytes, str]
PrivateKeyLike = Union[PrivateKey, bytes, str]


def as_public_key(key: PublicKeyLike) -> PublicKey:
    """接受PublicKey、编码后的bytes或十六进制字符串"""
    if isinstance(key, PublicKey):
        return key
    if isinstance(key, str):
        return PublicKey.from_hex(key)
    return PublicKey.from_bytes(key)


def as_private_key(key: PrivateKeyLike) -> PrivateKey:
    if isinstance(key, PrivateKey):
        return key
    if isinstance(key, str):
        return PrivateKey.from_hex(key)
    return PrivateKey.from_bytes(key)


def random_scalar(rng: Optional[random.Random] = None) -> int:
    """在[1, n-1]内均匀选取标量"""
    rng = rng or default_rng()
    return rng.randint(1, n - 1)


def generate_key_pair(rng: Optional[random.Random] = None) -> KeyPair:
    """生成SM2密钥对 (私钥d, 公钥P)"""
    private = PrivateKey(random_scalar(rng))
    return KeyPair(private, private.public_key())


def key_pair_from_seed(seed: Union[int, str]) -> KeyPair:
    """
    由种子确定性地生成密钥对，仅用于可复现的测试

    :param seed: 整数，或十进制/0x开头的十六进制字符串
    """
    if isinstance(seed, str):
        text = seed.strip()
        try:
            if text[:2] in ("0x", "0X"):
                seed = int(text[2:], 16)
            else:
                seed = int(text, 10)
        except ValueError:
            raise ValueError(f"无法将种子{seed!r}转换为整数") from None
    d = seed % (n - 1) + 1
    private = PrivateKey(d)
    return KeyPair(private, private.public_key())


def get_public_key(private_key: PrivateKeyLike) -> PublicKey:
    """由私钥导出公钥"""
    return as_private_key(private_key).public_key()


def compress_public_key(data: Union[bytes, str]) -> bytes:
    """04||X||Y 压缩为 02/03||X，已压缩的输入视为错误"""
    if isinstance(data, str):
        data = hex_to_bytes(data)
    if len(data) != 2 * COORD_LEN + 1 or data[0] != 0x04:
        raise InvalidPoint("只能压缩65字节的非压缩公钥")
    return PublicKey.from_bytes(data).to_bytes(compressed=True)


def decompress_public_key(data: Union[bytes, str]) -> bytes:
    """任意合法编码转为 04||X||Y"""
    return as_public_key(data).to_bytes(compressed=False)


def verify_public_key(data: PublicKeyLike) -> bool:
    """公钥在曲线上、非无穷远点且坐标在域内时返回True"""
    try:
        as_public_key(data)
    except (InvalidPoint, ValueError):
        logger.debug("公钥校验失败")
        return False
    return True


def compare_public_keys(key1: PublicKeyLike, key2: PublicKeyLike) -> bool:
    """比较两个公钥的仿射坐标，与压缩形式无关；无法解析时抛出InvalidPoint"""
    return as_public_key(key1) == as_public_key(key2)
