#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM2椭圆曲线点运算
遵循GB/T 32918.5-2017推荐曲线参数，仿射坐标对外，Jacobian坐标对内

点用Optional[Tuple[int, int]]表示，None为无穷远点O。
涉及私钥/临时随机数的点乘走Montgomery阶梯（固定运算序列），
只有公开标量（验签中的s、t）才使用带预计算表的窗口法。
"""

import threading
from typing import List, Optional, Tuple

from smcrypto.errors import InvalidPoint, InvalidScalar
from smcrypto.field import PrimeField

# SM2推荐的椭圆曲线参数
p = 0xFFFFFFFEFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF00000000FFFFFFFFFFFFFFFF
a = 0xFFFFFFFEFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFF00000000FFFFFFFFFFFFFFFC
b = 0x28E9FA9E9D9F5E344D5A9E4BCF6509A7F39789F515AB8F92DDBCBD414D940E93
n = 0xFFFFFFFEFFFFFFFFFFFFFFFFFFFFFFFF7203DF6B21C6052B53BBF40939D54123
Gx = 0x32C4AE2C1F1981195F9904466A39C9948FE30BBFF2660BE1715A4589334C74C7
Gy = 0xBC3736A2F4F6779C59BDCEE36B692153D0A9877CC62A474002DF32E52139F0A0

FP = PrimeField(p)
FN = PrimeField(n)

COORD_LEN = 32
G = (Gx, Gy)

# 点坐标表示，无穷远点用None表示
Point = Optional[Tuple[int, int]]
JacobianPoint = Tuple[int, int, int]

_J_INFINITY: JacobianPoint = (1, 1, 0)

WINDOW_SIZE = 4


def is_on_curve(P: Point) -> bool:
    """检查点是否在曲线上（无穷远点不算）"""
    if P is None:
        return False
    x, y = P
    if not (0 <= x < p and 0 <= y < p):
        return False
    return (y * y - (x * x * x + a * x + b)) % p == 0


def check_point(P: Point) -> Point:
    if not is_on_curve(P):
        raise InvalidPoint("点不在SM2曲线上或为无穷远点")
    return P


def check_scalar(k: int) -> int:
    if not 1 <= k <= n - 1:
        raise InvalidScalar("标量不在[1, n-1]范围内")
    return k


def point_negate(P: Point) -> Point:
    if P is None:
        return None
    x, y = P
    return (x, (-y) % p)


def point_double(P: Point) -> Point:
    """仿射坐标点加倍"""
    if P is None:
        return None

    x1, y1 = P
    if y1 == 0:
        return None

    # 斜率 k = (3x1² + a) / (2y1)
    k = FP.div(3 * x1 * x1 + a, 2 * y1)

    x3 = (k * k - 2 * x1) % p
    y3 = (k * (x1 - x3) - y1) % p
    return (x3, y3)


def point_add(P1: Point, P2: Point) -> Point:
    """仿射坐标点加法"""
    if P1 is None:
        return P2
    if P2 is None:
        return P1

    x1, y1 = P1
    x2, y2 = P2

    # P1 = -P2
    if x1 == x2 and (y1 + y2) % p == 0:
        return None
    if x1 == x2:
        return point_double(P1)

    k = FP.div(y2 - y1, x2 - x1)

    x3 = (k * k - x1 - x2) % p
    y3 = (k * (x1 - x3) - y1) % p
    return (x3, y3)


# ---------------- Jacobian坐标 ----------------

def to_jacobian(P: Point) -> JacobianPoint:
    if P is None:
        return _J_INFINITY
    return (P[0], P[1], 1)


def from_jacobian(J: JacobianPoint) -> Point:
    X, Y, Z = J
    if Z == 0:
        return None
    z_inv = FP.inv(Z)
    z_inv2 = z_inv * z_inv % p
    return (X * z_inv2 % p, Y * z_inv2 * z_inv % p)


def _j_double(J: JacobianPoint) -> JacobianPoint:
    X1, Y1, Z1 = J
    if Z1 == 0 or Y1 == 0:
        return _J_INFINITY

    XX = X1 * X1 % p
    YY = Y1 * Y1 % p
    ZZ = Z1 * Z1 % p
    S = 4 * X1 * YY % p
    M = (3 * XX + a * ZZ * ZZ) % p
    X3 = (M * M - 2 * S) % p
    Y3 = (M * (S - X3) - 8 * YY * YY) % p
    Z3 = 2 * Y1 * Z1 % p
    return (X3, Y3, Z3)


def _j_add(J1: JacobianPoint, J2: JacobianPoint) -> JacobianPoint:
    X1, Y1, Z1 = J1
    X2, Y2, Z2 = J2
    if Z1 == 0:
        return J2
    if Z2 == 0:
        return J1

    Z1Z1 = Z1 * Z1 % p
    Z2Z2 = Z2 * Z2 % p
    U1 = X1 * Z2Z2 % p
    U2 = X2 * Z1Z1 % p
    S1 = Y1 * Z2 * Z2Z2 % p
    S2 = Y2 * Z1 * Z1Z1 % p

    if U1 == U2:
        if S1 != S2:
            return _J_INFINITY
        return _j_double(J1)

    H = (U2 - U1) % p
    R = (S2 - S1) % p
    HH = H * H % p
    HHH = H * HH % p
    V = U1 * HH % p
    X3 = (R * R - HHH - 2 * V) % p
    Y3 = (R * (V - X3) - S1 * HHH) % p
    Z3 = Z1 * Z2 * H % p
    return (X3, Y3, Z3)


# ---------------- 点乘 ----------------

def point_multiply(P: Point, k: int) -> Point:
    """
    秘密标量点乘 k*P，Montgomery阶梯

    k先规约到[0, n)，再加n或2n使其固定为257位，
    每一位都恰好做一次点加和一次倍点。
    """
    if P is None:
        return None
    k %= n
    if k == 0:
        return None

    k += n
    if k.bit_length() <= n.bit_length():
        k += n

    R = [to_jacobian(P), _j_double(to_jacobian(P))]
    for i in range(k.bit_length() - 2, -1, -1):
        bit = (k >> i) & 1
        R[1 - bit] = _j_add(R[0], R[1])
        R[bit] = _j_double(R[bit])
    return from_jacobian(R[0])


def multiply_base(k: int) -> Point:
    """秘密标量乘基点 k*G"""
    return point_multiply(G, k)


def precompute_table(P: Point) -> List[JacobianPoint]:
    """预计算 [0]P..[15]P，用于公开标量的窗口法点乘"""
    check_point(P)
    table = [_J_INFINITY, to_jacobian(P)]
    for i in range(2, 1 << WINDOW_SIZE):
        if i % 2 == 0:
            table.append(_j_double(table[i >> 1]))
        else:
            table.append(_j_add(table[i - 1], table[1]))
    return table


def _window_multiply(table: List[JacobianPoint], k: int) -> JacobianPoint:
    mask = (1 << WINDOW_SIZE) - 1
    result = _J_INFINITY
    top = (k.bit_length() + WINDOW_SIZE - 1) // WINDOW_SIZE
    for w in range(top - 1, -1, -1):
        for _ in range(WINDOW_SIZE):
            result = _j_double(result)
        digit = (k >> (w * WINDOW_SIZE)) & mask
        if digit:
            result = _j_add(result, table[digit])
    return result


# G的固定基预计算表：_G_TABLE[i][j] = j * 16^i * G
_G_TABLE: Optional[List[List[JacobianPoint]]] = None
_g_table_lock = threading.Lock()


def _g_table() -> List[List[JacobianPoint]]:
    global _G_TABLE
    if _G_TABLE is None:
        with _g_table_lock:
            if _G_TABLE is None:
                rows = []
                base = to_jacobian(G)
                for _ in range((n.bit_length() + WINDOW_SIZE - 1) // WINDOW_SIZE):
                    row = [_J_INFINITY, base]
                    for j in range(2, 1 << WINDOW_SIZE):
                        row.append(_j_add(row[j - 1], base))
                    rows.append(row)
                    # 16 * base
                    base = _j_add(row[-1], base)
                _G_TABLE = rows
    return _G_TABLE


def point_multiply_public(P: Point, k: int, table: Optional[List[JacobianPoint]] = None) -> Point:
    """
    公开标量点乘，运行时间与k有关，不能用于私钥或临时随机数

    :param P: 点，为G时使用固定基预计算表
    :param k: 公开标量
    :param table: precompute_table(P)的结果，可重复使用
    """
    if P is None:
        return None
    k %= n
    if k == 0:
        return None

    if table is None and P == G:
        mask = (1 << WINDOW_SIZE) - 1
        result = _J_INFINITY
        for i, row in enumerate(_g_table()):
            digit = (k >> (i * WINDOW_SIZE)) & mask
            if digit:
                result = _j_add(result, row[digit])
        return from_jacobian(result)

    if table is None:
        table = precompute_table(P)
    return from_jacobian(_window_multiply(table, k))


def multiply_add_public(k1: int, k2: int, Q: Point, table: Optional[List[JacobianPoint]] = None) -> Point:
    """k1*G + k2*Q，k1、k2均为公开值"""
    return point_add(point_multiply_public(G, k1), point_multiply_public(Q, k2, table))


# ---------------- 点编码 ----------------

def encode_point(P: Point, compressed: bool = False) -> bytes:
    """非压缩 04||X||Y，压缩 02/03||X"""
    check_point(P)
    x, y = P
    if compressed:
        return bytes([0x02 | (y & 1)]) + x.to_bytes(COORD_LEN, 'big')
    return b"\x04" + x.to_bytes(COORD_LEN, 'big') + y.to_bytes(COORD_LEN, 'big')


def decompress_y(x: int, odd: int) -> int:
    """由x和奇偶性恢复y"""
    if not 0 <= x < p:
        raise InvalidPoint("x坐标超出域范围")
    y = FP.sqrt(x * x * x + a * x + b)
    if y is None:
        raise InvalidPoint("x坐标对应的点不在曲线上")
    if y & 1 != odd:
        y = p - y
    return y


def decode_point(data: bytes) -> Point:
    """解析点编码并校验在曲线上"""
    data = bytes(data)
    if not data:
        raise InvalidPoint("点编码为空")
    pc = data[0]
    if pc == 0x04:
        if len(data) != 2 * COORD_LEN + 1:
            raise InvalidPoint(f"非压缩点长度{len(data)}错误，应当为{2 * COORD_LEN + 1}")
        x = int.from_bytes(data[1:COORD_LEN + 1], 'big')
        y = int.from_bytes(data[COORD_LEN + 1:], 'big')
        return check_point((x, y))
    if pc in (0x02, 0x03):
        if len(data) != COORD_LEN + 1:
            raise InvalidPoint(f"压缩点长度{len(data)}错误，应当为{COORD_LEN + 1}")
        x = int.from_bytes(data[1:], 'big')
        return check_point((x, decompress_y(x, pc & 1)))
    raise InvalidPoint(f"点编码PC值错误（{pc:02x}）")
