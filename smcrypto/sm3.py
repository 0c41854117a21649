#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM3密码杂凑算法、HMAC-SM3及SM3密钥派生函数
遵循GB/T 32905-2016

SM3Hash提供与hashlib相同的接口，可直接作为hmac模块的digestmod使用。
"""

import struct
from typing import List

IV = [
    0x7380166F, 0x4914B2B9, 0x172442D7, 0xDA8A0600,
    0xA96F30BC, 0x163138AA, 0xE38DEE4D, 0xB0FB0E4E
]

_MASK = 0xFFFFFFFF


def _rotl(x: int, k: int) -> int:
    k &= 31
    return ((x << k) | (x >> (32 - k))) & _MASK


# 预计算每轮的 Tj <<< j
_T = [_rotl(0x79CC4519 if j <= 15 else 0x7A879D8A, j) for j in range(64)]


def _p0(x: int) -> int:
    return x ^ _rotl(x, 9) ^ _rotl(x, 17)


def _p1(x: int) -> int:
    return x ^ _rotl(x, 15) ^ _rotl(x, 23)


def sm3_compress(V: List[int], block: bytes) -> List[int]:
    """压缩函数CF，处理一个512位分组"""
    w = list(struct.unpack(">16I", block))
    for j in range(16, 68):
        w.append(_p1(w[j - 16] ^ w[j - 9] ^ _rotl(w[j - 3], 15)) ^ _rotl(w[j - 13], 7) ^ w[j - 6])
    w1 = [w[j] ^ w[j + 4] for j in range(64)]

    A, B, C, D, E, F, G, H = V
    for j in range(64):
        a12 = _rotl(A, 12)
        SS1 = _rotl((a12 + E + _T[j]) & _MASK, 7)
        SS2 = SS1 ^ a12
        if j <= 15:
            ff = A ^ B ^ C
            gg = E ^ F ^ G
        else:
            ff = (A & B) | (A & C) | (B & C)
            gg = (E & F) | (~E & G)
        TT1 = (ff + D + SS2 + w1[j]) & _MASK
        TT2 = (gg + H + SS1 + w[j]) & _MASK
        D = C
        C = _rotl(B, 9)
        B = A
        A = TT1
        H = G
        G = _rotl(F, 19)
        F = E
        E = _p0(TT2)
    return [x ^ y for x, y in zip(V, (A, B, C, D, E, F, G, H))]


class SM3Hash:
    """增量式SM3，接口与hashlib对象一致"""

    name = "sm3"
    digest_size = 32
    block_size = 64

    def __init__(self, data: bytes = b""):
        self._v = IV[:]
        self._buf = b""
        self._count = 0
        if data:
            self.update(data)

    def update(self, data: bytes) -> "SM3Hash":
        data = bytes(data)
        self._count += len(data)
        data = self._buf + data
        full = len(data) // 64 * 64
        for i in range(0, full, 64):
            self._v = sm3_compress(self._v, data[i:i + 64])
        self._buf = data[full:]
        return self

    def copy(self) -> "SM3Hash":
        other = SM3Hash()
        other._v = self._v[:]
        other._buf = self._buf
        other._count = self._count
        return other

    def digest(self) -> bytes:
        # 填充：0x80，补0至56 mod 64，再追加64位大端比特长度
        bit_len = self._count * 8
        pad = b"\x80" + b"\x00" * ((55 - self._count) % 64) + struct.pack(">Q", bit_len & 0xFFFFFFFFFFFFFFFF)
        V = self._v
        data = self._buf + pad
        for i in range(0, len(data), 64):
            V = sm3_compress(V, data[i:i + 64])
        return struct.pack(">8I", *V)

    def hexdigest(self) -> str:
        return self.digest().hex()


def sm3_hash(data: bytes) -> bytes:
    """计算SM3哈希值"""
    return SM3Hash(data).digest()


def hmac_sm3(key: bytes, msg: bytes) -> bytes:
    """HMAC-SM3"""
    block = SM3Hash.block_size
    key = bytes(key)
    if len(key) > block:
        key = sm3_hash(key)
    key = key.ljust(block, b"\x00")
    o = bytes(x ^ 0x5c for x in key)
    i = bytes(x ^ 0x36 for x in key)
    return sm3_hash(o + sm3_hash(i + bytes(msg)))


def sm3_kdf(z: bytes, klen: int, iv: bytes = b"") -> bytes:
    """
    SM3密钥派生函数
    K = H(Z||ct=1||iv) || H(Z||ct=2||iv) || ... 截取前klen字节

    调用方（如SM2加密）需要自行处理全0输出。
    """
    if klen < 0:
        raise ValueError("派生密钥长度不能为负")
    z = bytes(z)
    iv = bytes(iv)
    out = bytearray()
    ct = 1
    while len(out) < klen:
        out.extend(sm3_hash(z + struct.pack(">I", ct) + iv))
        ct += 1
    return bytes(out[:klen])
