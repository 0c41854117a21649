#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM2签名与密文的ASN.1 DER编码
签名: SEQUENCE { INTEGER r, INTEGER s }
密文: SEQUENCE { INTEGER x, INTEGER y, OCTET STRING, OCTET STRING }
"""

from typing import Tuple

from Cryptodome.Util.asn1 import DerInteger, DerOctetString, DerSequence

from smcrypto.ecc import p
from smcrypto.errors import MalformedCiphertext, MalformedSignature


def encode_signature(r: int, s: int) -> bytes:
    return DerSequence([DerInteger(r), DerInteger(s)]).encode()


def decode_signature(der: bytes) -> Tuple[int, int]:
    """
    严格解析DER签名

    只检查结构，r、s的取值范围由验签判断
    """
    seq = DerSequence()
    try:
        seq.decode(bytes(der), strict=True, nr_elements=2, only_ints_expected=True)
    except (ValueError, TypeError, IndexError) as e:
        raise MalformedSignature("DER签名格式错误") from e
    return seq[0], seq[1]


def encode_ciphertext(x: int, y: int, first: bytes, second: bytes) -> bytes:
    """first/second按密文排列顺序给出（C3C2或C2C3）"""
    return DerSequence([
        DerInteger(x),
        DerInteger(y),
        DerOctetString(bytes(first)),
        DerOctetString(bytes(second)),
    ]).encode()


def decode_ciphertext(der: bytes) -> Tuple[int, int, bytes, bytes]:
    seq = DerSequence()
    try:
        seq.decode(bytes(der), strict=True, nr_elements=4)
        x, y = seq[0], seq[1]
        if not (isinstance(x, int) and isinstance(y, int)):
            raise ValueError("C1坐标不是INTEGER")
        first = DerOctetString().decode(seq[2], strict=True).payload
        second = DerOctetString().decode(seq[3], strict=True).payload
    except (ValueError, TypeError, IndexError) as e:
        raise MalformedCiphertext("ASN.1密文格式错误") from e
    if not (0 <= x < p and 0 <= y < p):
        raise MalformedCiphertext("ASN.1密文中的C1坐标超出范围")
    return x, y, first, second
