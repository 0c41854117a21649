#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM4工作模式：ECB/CBC/CTR/CFB/OFB/GCM
ECB、CBC需要填充（默认PKCS#7），CTR、CFB、OFB、GCM可处理任意长度
"""

import hmac
import logging
import struct
from dataclasses import dataclass
from typing import List, NamedTuple, Optional

from Cryptodome.Util.Padding import pad, unpad

from smcrypto.errors import (
    AuthenticationError, InvalidIVLength, InvalidLength, InvalidPadding
)
from smcrypto.sm4 import BLOCK_SIZE, SM4
from smcrypto.utils import xor_bytes

logger = logging.getLogger(__name__)

MODES = ("ecb", "cbc", "ctr", "cfb", "ofb", "gcm")
PADDINGS = ("pkcs7", "zero", "none")

GCM_IV_SIZE = 12
GCM_TAG_SIZE = 16
GCM_MIN_TAG_SIZE = 4


@dataclass
class SM4Options:
    """SM4加解密参数"""
    mode: str = "ecb"
    padding: str = "pkcs7"
    iv: Optional[bytes] = None
    associated_data: bytes = b""
    tag: Optional[bytes] = None
    tag_length: int = GCM_TAG_SIZE


class GCMResult(NamedTuple):
    ciphertext: bytes
    tag: bytes


# ---------------- 填充 ----------------

def _normalize_padding(padding: str) -> str:
    padding = padding.lower().replace("#", "")
    if padding == "pkcs5":
        padding = "pkcs7"
    if padding not in PADDINGS:
        raise ValueError(f"不支持的填充方式: {padding}")
    return padding


def apply_padding(data: bytes, padding: str) -> bytes:
    padding = _normalize_padding(padding)
    if padding == "pkcs7":
        return pad(data, BLOCK_SIZE, style="pkcs7")
    if padding == "zero":
        if len(data) % BLOCK_SIZE == 0:
            return data
        return data + b"\x00" * (BLOCK_SIZE - len(data) % BLOCK_SIZE)
    if len(data) % BLOCK_SIZE != 0:
        raise InvalidLength(f"无填充模式下数据长度{len(data)}不是{BLOCK_SIZE}的整数倍")
    return data


def remove_padding(data: bytes, padding: str) -> bytes:
    padding = _normalize_padding(padding)
    if padding == "pkcs7":
        try:
            return unpad(data, BLOCK_SIZE, style="pkcs7")
        except ValueError as e:
            raise InvalidPadding("PKCS#7填充错误") from e
    if padding == "zero":
        return data.rstrip(b"\x00")
    return data


def _check_blocks(data: bytes):
    if len(data) % BLOCK_SIZE != 0:
        raise InvalidLength(f"密文长度{len(data)}不是{BLOCK_SIZE}的整数倍")


def _check_iv(iv: Optional[bytes]) -> bytes:
    if iv is None or len(iv) != BLOCK_SIZE:
        raise InvalidIVLength(f"IV长度应当为{BLOCK_SIZE}字节")
    return bytes(iv)


# ---------------- ECB / CBC ----------------

def ecb_encrypt(key: bytes, data: bytes, padding: str = "pkcs7") -> bytes:
    cipher = SM4(key)
    data = apply_padding(bytes(data), padding)
    return b"".join(cipher.encrypt_block(data[i:i + BLOCK_SIZE])
                    for i in range(0, len(data), BLOCK_SIZE))


def ecb_decrypt(key: bytes, data: bytes, padding: str = "pkcs7") -> bytes:
    cipher = SM4(key)
    data = bytes(data)
    _check_blocks(data)
    out = b"".join(cipher.decrypt_block(data[i:i + BLOCK_SIZE])
                   for i in range(0, len(data), BLOCK_SIZE))
    return remove_padding(out, padding)


def cbc_encrypt(key: bytes, iv: bytes, data: bytes, padding: str = "pkcs7") -> bytes:
    cipher = SM4(key)
    prev = _check_iv(iv)
    data = apply_padding(bytes(data), padding)
    out = bytearray()
    for i in range(0, len(data), BLOCK_SIZE):
        prev = cipher.encrypt_block(xor_bytes(data[i:i + BLOCK_SIZE], prev))
        out.extend(prev)
    return bytes(out)


def cbc_decrypt(key: bytes, iv: bytes, data: bytes, padding: str = "pkcs7") -> bytes:
    cipher = SM4(key)
    prev = _check_iv(iv)
    data = bytes(data)
    _check_blocks(data)
    out = bytearray()
    for i in range(0, len(data), BLOCK_SIZE):
        block = data[i:i + BLOCK_SIZE]
        out.extend(xor_bytes(cipher.decrypt_block(block), prev))
        prev = block
    return remove_padding(bytes(out), padding)


# ---------------- 流模式 ----------------

def _xor_stream(data: bytes, keystream: List[bytes]) -> bytes:
    stream = b"".join(keystream)[:len(data)]
    return xor_bytes(data, stream)


def ctr_crypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """CTR模式，计数器为128位大端整数，加解密相同"""
    cipher = SM4(key)
    counter = int.from_bytes(_check_iv(iv), 'big')
    data = bytes(data)
    blocks = []
    for _ in range(0, len(data), BLOCK_SIZE):
        blocks.append(cipher.encrypt_block(counter.to_bytes(BLOCK_SIZE, 'big')))
        counter = (counter + 1) & ((1 << 128) - 1)
    return _xor_stream(data, blocks)


def ofb_crypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """OFB模式，反馈上一个密钥流分组"""
    cipher = SM4(key)
    state = _check_iv(iv)
    data = bytes(data)
    blocks = []
    for _ in range(0, len(data), BLOCK_SIZE):
        state = cipher.encrypt_block(state)
        blocks.append(state)
    return _xor_stream(data, blocks)


def cfb_encrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    """CFB-128模式，反馈上一个密文分组"""
    cipher = SM4(key)
    prev = _check_iv(iv)
    data = bytes(data)
    out = bytearray()
    for i in range(0, len(data), BLOCK_SIZE):
        chunk = data[i:i + BLOCK_SIZE]
        prev = xor_bytes(chunk, cipher.encrypt_block(prev)[:len(chunk)])
        out.extend(prev)
    return bytes(out)


def cfb_decrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    cipher = SM4(key)
    prev = _check_iv(iv)
    data = bytes(data)
    out = bytearray()
    for i in range(0, len(data), BLOCK_SIZE):
        chunk = data[i:i + BLOCK_SIZE]
        out.extend(xor_bytes(chunk, cipher.encrypt_block(prev)[:len(chunk)]))
        prev = chunk
    return bytes(out)


# ---------------- GCM ----------------

# GF(2^128)约简多项式 x^128 + x^7 + x^2 + x + 1（比特反序表示）
_R = 0xE1 << 120


class GHash:
    """GHASH，H固定后预计算 H·x^i，乘法只剩异或"""

    def __init__(self, h: bytes):
        v = int.from_bytes(h, 'big')
        table = []
        for _ in range(128):
            table.append(v)
            v = (v >> 1) ^ _R if v & 1 else v >> 1
        self._table = table
        self._y = 0

    def _mul_h(self, x: int) -> int:
        z = 0
        table = self._table
        for i in range(128):
            if (x >> (127 - i)) & 1:
                z ^= table[i]
        return z

    def update(self, data: bytes) -> "GHash":
        """按16字节分组累加，不足一组的尾部补0"""
        data = bytes(data)
        for i in range(0, len(data), BLOCK_SIZE):
            block = data[i:i + BLOCK_SIZE].ljust(BLOCK_SIZE, b"\x00")
            self._y = self._mul_h(self._y ^ int.from_bytes(block, 'big'))
        return self

    def digest(self) -> bytes:
        return self._y.to_bytes(BLOCK_SIZE, 'big')


def _inc32(block: bytes) -> bytes:
    ctr = (struct.unpack(">I", block[12:])[0] + 1) & 0xFFFFFFFF
    return block[:12] + struct.pack(">I", ctr)


def _gcm_setup(cipher: SM4, iv: bytes):
    if not iv:
        raise InvalidIVLength("GCM的IV不能为空")
    iv = bytes(iv)
    h = cipher.encrypt_block(b"\x00" * BLOCK_SIZE)
    if len(iv) == GCM_IV_SIZE:
        j0 = iv + b"\x00\x00\x00\x01"
    else:
        g = GHash(h)
        g.update(iv)
        g.update(struct.pack(">QQ", 0, len(iv) * 8))
        j0 = g.digest()
    return h, j0


def _gctr(cipher: SM4, icb: bytes, data: bytes) -> bytes:
    blocks = []
    cb = icb
    for _ in range(0, len(data), BLOCK_SIZE):
        blocks.append(cipher.encrypt_block(cb))
        cb = _inc32(cb)
    return _xor_stream(data, blocks)


def _gcm_tag(cipher: SM4, h: bytes, j0: bytes, aad: bytes, ciphertext: bytes) -> bytes:
    g = GHash(h)
    g.update(aad)
    g.update(ciphertext)
    g.update(struct.pack(">QQ", len(aad) * 8, len(ciphertext) * 8))
    return xor_bytes(cipher.encrypt_block(j0), g.digest())


def _check_tag_length(length: int):
    if not GCM_MIN_TAG_SIZE <= length <= GCM_TAG_SIZE:
        raise InvalidLength(f"GCM认证标签长度{length}不在[{GCM_MIN_TAG_SIZE}, {GCM_TAG_SIZE}]范围内")


def gcm_encrypt(key: bytes, iv: bytes, data: bytes, aad: bytes = b"",
                tag_length: int = GCM_TAG_SIZE) -> GCMResult:
    """GCM加密，返回(密文, 认证标签)"""
    _check_tag_length(tag_length)
    cipher = SM4(key)
    h, j0 = _gcm_setup(cipher, iv)
    ciphertext = _gctr(cipher, _inc32(j0), bytes(data))
    tag = _gcm_tag(cipher, h, j0, bytes(aad), ciphertext)
    return GCMResult(ciphertext, tag[:tag_length])


def gcm_decrypt(key: bytes, iv: bytes, data: bytes, tag: bytes, aad: bytes = b"") -> bytes:
    """GCM解密，先校验标签，不匹配时不做任何解密"""
    if tag is None:
        raise AuthenticationError("GCM解密需要认证标签")
    _check_tag_length(len(tag))
    cipher = SM4(key)
    h, j0 = _gcm_setup(cipher, iv)
    data = bytes(data)
    expected = _gcm_tag(cipher, h, j0, bytes(aad), data)[:len(tag)]
    if not hmac.compare_digest(expected, bytes(tag)):
        logger.debug("GCM认证标签校验失败")
        raise AuthenticationError("GCM认证标签不匹配")
    return _gctr(cipher, _inc32(j0), data)


# ---------------- 统一入口 ----------------

def _options(options: Optional[SM4Options]) -> SM4Options:
    options = options or SM4Options()
    if options.mode.lower() not in MODES:
        raise ValueError(f"不支持的工作模式: {options.mode}")
    return options


def sm4_encrypt(data: bytes, key: bytes, options: Optional[SM4Options] = None):
    """按options指定的模式加密，GCM返回GCMResult，其余返回bytes"""
    options = _options(options)
    mode = options.mode.lower()
    if mode == "ecb":
        return ecb_encrypt(key, data, options.padding)
    if mode == "cbc":
        return cbc_encrypt(key, options.iv, data, options.padding)
    if mode == "ctr":
        return ctr_crypt(key, options.iv, data)
    if mode == "cfb":
        return cfb_encrypt(key, options.iv, data)
    if mode == "ofb":
        return ofb_crypt(key, options.iv, data)
    return gcm_encrypt(key, options.iv, data, options.associated_data, options.tag_length)


def sm4_decrypt(data: bytes, key: bytes, options: Optional[SM4Options] = None) -> bytes:
    options = _options(options)
    mode = options.mode.lower()
    if mode == "ecb":
        return ecb_decrypt(key, data, options.padding)
    if mode == "cbc":
        return cbc_decrypt(key, options.iv, data, options.padding)
    if mode == "ctr":
        return ctr_crypt(key, options.iv, data)
    if mode == "cfb":
        return cfb_decrypt(key, options.iv, data)
    if mode == "ofb":
        return ofb_crypt(key, options.iv, data)
    return gcm_decrypt(key, options.iv, data, options.tag, options.associated_data)
