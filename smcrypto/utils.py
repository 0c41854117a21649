#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
字节/十六进制/UTF-8转换工具与随机数源
算法核心只处理bytes，字符串只在接口边界转换
"""

import random
import threading
from typing import Optional

from Cryptodome.Util.strxor import strxor

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")

_rng_lock = threading.Lock()
_default_rng: Optional[random.Random] = None


def default_rng() -> random.Random:
    """进程级安全随机数源，首次使用时创建"""
    global _default_rng
    if _default_rng is None:
        with _rng_lock:
            if _default_rng is None:
                _default_rng = random.SystemRandom()
    return _default_rng


def hex_to_bytes(hex_str: str) -> bytes:
    """严格解析十六进制字符串，只允许去掉0x前缀"""
    if hex_str[:2] in ("0x", "0X"):
        hex_str = hex_str[2:]
    if len(hex_str) % 2 != 0:
        raise ValueError(f"十六进制字符串长度为奇数: {len(hex_str)}")
    if not set(hex_str) <= _HEX_DIGITS:
        raise ValueError("十六进制字符串包含非法字符")
    return bytes.fromhex(hex_str)


def bytes_to_hex(data: bytes) -> str:
    return bytes(data).hex()


def utf8_to_bytes(text: str) -> bytes:
    return text.encode("utf-8")


def bytes_to_utf8(data: bytes) -> str:
    return bytes(data).decode("utf-8")


def utf8_to_hex(text: str) -> str:
    return utf8_to_bytes(text).hex()


def left_pad(text: str, length: int) -> str:
    """左侧补0到指定长度"""
    return text.rjust(length, "0")


def xor_bytes(b1: bytes, b2: bytes) -> bytes:
    """等长字节串异或"""
    if len(b1) != len(b2):
        raise ValueError("异或的两个字节串长度不一致")
    if not b1:
        return b""
    return strxor(bytes(b1), bytes(b2))


def int_to_bytes(value: int, length: int = 32) -> bytes:
    return value.to_bytes(length, byteorder='big')


def bytes_to_int(data: bytes) -> int:
    return int.from_bytes(data, byteorder='big')
