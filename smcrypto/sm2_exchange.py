#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM2密钥交换协议
遵循GB/T 32918.3-2016，A为发起方，B为响应方

x̄ = 2^w + (x & (2^w - 1))，w = 127
t = (d + x̄_self * r) mod n
U = t * (P_peer + x̄_peer * R_peer)
K = KDF(xU || yU || ZA || ZB, klen)
"""

import hmac
import logging
import random
from typing import Optional, Tuple

from smcrypto.ecc import (
    Point, point_add, point_multiply, point_multiply_public, n
)
from smcrypto.errors import InvalidPoint, SessionError
from smcrypto.sm2_keys import (
    KeyPair, PrivateKeyLike, PublicKey, PublicKeyLike, as_private_key,
    as_public_key, generate_key_pair
)
from smcrypto.sm2_sign import calculate_z
from smcrypto.sm3 import sm3_hash, sm3_kdf
from smcrypto.utils import int_to_bytes

logger = logging.getLogger(__name__)

W = 127
_W_MASK = (1 << W) - 1


def _x_bar(R: PublicKey) -> int:
    return (1 << W) + (R.x & _W_MASK)


def _agree(static_self: KeyPair, ephemeral_self: KeyPair,
           static_peer: PublicKey, ephemeral_peer: PublicKey,
           is_responder: bool, id_self: Optional[bytes],
           id_peer: Optional[bytes]) -> Tuple[Point, bytes, bytes]:
    """计算共享点U以及按发起方在前排列的 (ZA, ZB)"""
    t = (static_self.private.d + _x_bar(ephemeral_self.public) * ephemeral_self.private.d) % n

    # x̄_peer和R_peer都是公开值
    peer_sum = point_add(static_peer.point,
                         point_multiply_public(ephemeral_peer.point, _x_bar(ephemeral_peer)))
    U = point_multiply(peer_sum, t)
    if U is None:
        raise InvalidPoint("共享点U为无穷远点，协商失败")

    z_self = calculate_z(static_self.public, id_self)
    z_peer = calculate_z(static_peer, id_peer)
    if is_responder:
        return U, z_peer, z_self
    return U, z_self, z_peer


def calculate_shared_key(static_self: KeyPair, ephemeral_self: KeyPair,
                         static_peer: PublicKeyLike, ephemeral_peer: PublicKeyLike,
                         key_length: int, is_responder: bool = False,
                         id_self: Optional[bytes] = None,
                         id_peer: Optional[bytes] = None) -> bytes:
    """
    计算协商密钥K

    :param static_self: 己方长期密钥对
    :param ephemeral_self: 己方临时密钥对
    :param static_peer: 对方长期公钥
    :param ephemeral_peer: 对方临时公钥
    :param key_length: 密钥字节数
    :param is_responder: 己方是否为响应方B
    :param id_self: 己方用户ID，默认1234567812345678
    :param id_peer: 对方用户ID，默认1234567812345678
    """
    if key_length <= 0:
        raise ValueError("协商密钥长度必须为正")
    U, za, zb = _agree(static_self, ephemeral_self,
                       as_public_key(static_peer), as_public_key(ephemeral_peer),
                       is_responder, id_self, id_peer)
    return sm3_kdf(int_to_bytes(U[0]) + int_to_bytes(U[1]) + za + zb, key_length)


class KeyExchangeSession:
    """
    一次密钥交换会话

    构造时生成临时密钥对，derive()之后丢弃临时私钥，不能再次协商。
    """

    def __init__(self, static_key_pair: KeyPair, is_responder: bool = False,
                 identity: Optional[bytes] = None,
                 rng: Optional[random.Random] = None):
        self.static_key_pair = static_key_pair
        self.is_responder = is_responder
        self.identity = identity
        self._ephemeral: Optional[KeyPair] = generate_key_pair(rng)
        self._ephemeral_public = self._ephemeral.public
        self._confirm: Optional[Tuple[bytes, bytes]] = None

    @property
    def ephemeral_public_key(self) -> PublicKey:
        return self._ephemeral_public

    def derive(self, peer_static: PublicKeyLike, peer_ephemeral: PublicKeyLike,
               key_length: int, peer_identity: Optional[bytes] = None) -> bytes:
        if self._ephemeral is None:
            raise SessionError("会话已完成协商，临时密钥不能重复使用")
        if key_length <= 0:
            raise ValueError("协商密钥长度必须为正")
        peer_static = as_public_key(peer_static)
        peer_ephemeral = as_public_key(peer_ephemeral)

        ephemeral = self._ephemeral
        self._ephemeral = None
        U, za, zb = _agree(self.static_key_pair, ephemeral, peer_static, peer_ephemeral,
                           self.is_responder, self.identity, peer_identity)
        xu, yu = int_to_bytes(U[0]), int_to_bytes(U[1])

        # RA为发起方临时公钥，RB为响应方临时公钥
        if self.is_responder:
            ra, rb = peer_ephemeral, ephemeral.public
        else:
            ra, rb = ephemeral.public, peer_ephemeral
        inner = sm3_hash(xu + za + zb +
                         int_to_bytes(ra.x) + int_to_bytes(ra.y) +
                         int_to_bytes(rb.x) + int_to_bytes(rb.y))
        s_b = sm3_hash(b"\x02" + yu + inner)
        s_a = sm3_hash(b"\x03" + yu + inner)
        self._confirm = (s_b, s_a) if self.is_responder else (s_a, s_b)

        return sm3_kdf(xu + yu + za + zb, key_length)

    def confirmation(self) -> Tuple[bytes, bytes]:
        """返回 (发送给对方的确认值, 期望从对方收到的确认值)"""
        if self._confirm is None:
            raise SessionError("尚未完成密钥协商")
        return self._confirm

    def check_confirmation(self, tag: bytes) -> bool:
        _, expected = self.confirmation()
        ok = hmac.compare_digest(bytes(tag), expected)
        if not ok:
            logger.debug("密钥确认失败")
        return ok


def ecdh(private_key: PrivateKeyLike, public_key: PublicKeyLike) -> bytes:
    """普通ECDH，返回 d*Q 的x坐标（32字节）"""
    priv = as_private_key(private_key)
    pub = as_public_key(public_key)
    shared = point_multiply(pub.point, priv.d)
    if shared is None:
        raise InvalidPoint("共享点为无穷远点")
    return int_to_bytes(shared[0])
