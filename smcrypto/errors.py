#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
国密算法异常类型
输入校验类异常同时继承ValueError，完整性/认证失败单独区分
"""


class SMCryptoError(Exception):
    """所有国密算法异常的基类"""


class InvalidKeyLength(SMCryptoError, ValueError):
    pass


class InvalidIVLength(SMCryptoError, ValueError):
    pass


class InvalidBlockLength(SMCryptoError, ValueError):
    pass


class InvalidLength(SMCryptoError, ValueError):
    """无填充模式下输入长度不是分组长度的整数倍"""


class InvalidPadding(SMCryptoError, ValueError):
    pass


class InvalidPoint(SMCryptoError, ValueError):
    """点不在曲线上、为无穷远点或编码错误"""


class InvalidScalar(SMCryptoError, ValueError):
    """标量不在[1, n-1]范围内"""


class MalformedCiphertext(SMCryptoError, ValueError):
    pass


class MalformedSignature(SMCryptoError, ValueError):
    pass


class IntegrityError(SMCryptoError):
    """SM2解密时C3校验失败"""


class AuthenticationError(SMCryptoError):
    """GCM认证标签不匹配"""


class RNGExhausted(SMCryptoError, RuntimeError):
    """重试次数超过上限"""


class SessionError(SMCryptoError, RuntimeError):
    """密钥交换会话的临时密钥已被使用"""
