#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
素数域上的模运算
SM2同时用到模p（坐标）和模n（标量）两个域
"""

from typing import Optional

from smcrypto.errors import InvalidScalar


class PrimeField:
    """模素数m的有限域，所有运算结果都落在[0, m)内"""

    def __init__(self, modulus: int):
        self.modulus = modulus

    def __repr__(self):
        return f"PrimeField(0x{self.modulus:x})"

    def contains(self, value: int) -> bool:
        return 0 <= value < self.modulus

    def add(self, x: int, y: int) -> int:
        return (x + y) % self.modulus

    def sub(self, x: int, y: int) -> int:
        return (x - y) % self.modulus

    def neg(self, x: int) -> int:
        return -x % self.modulus

    def mul(self, x: int, y: int) -> int:
        return (x * y) % self.modulus

    def pow(self, x: int, e: int) -> int:
        return pow(x, e, self.modulus)

    def inv(self, x: int) -> int:
        """费马小定理求逆，指数固定为m-2"""
        x %= self.modulus
        if x == 0:
            raise InvalidScalar("0没有模逆")
        return pow(x, self.modulus - 2, self.modulus)

    def div(self, x: int, y: int) -> int:
        return self.mul(x, self.inv(y))

    def sqrt(self, x: int) -> Optional[int]:
        """求平方根，不存在时返回None"""
        m = self.modulus
        x %= m
        if x == 0:
            return 0
        # 欧拉判别
        if pow(x, (m - 1) // 2, m) != 1:
            return None
        if m % 4 == 3:
            return pow(x, (m + 1) // 4, m)

        # Tonelli-Shanks
        q, s = m - 1, 0
        while q % 2 == 0:
            q //= 2
            s += 1
        z = 2
        while pow(z, (m - 1) // 2, m) != m - 1:
            z += 1
        c = pow(z, q, m)
        r = pow(x, (q + 1) // 2, m)
        t = pow(x, q, m)
        while t != 1:
            i, t2 = 0, t
            while t2 != 1:
                t2 = t2 * t2 % m
                i += 1
            b = pow(c, 1 << (s - i - 1), m)
            r = r * b % m
            c = b * b % m
            t = t * c % m
            s = i
        return r
