#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
国密算法纯Python实现
SM2（加密、签名、密钥交换）、SM3（杂凑、HMAC、KDF）、SM4（ECB/CBC/CTR/CFB/OFB/GCM）
"""

__version__ = "0.1.0"
