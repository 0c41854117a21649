#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
SM2算法完整测试套件
测试密钥管理、签名验签、公钥加解密、密钥交换和性能测试入口
"""

import contextlib
import io
import random
import threading
import unittest
from unittest import mock

from smcrypto import asn1
from smcrypto.benchmark import main as benchmark_main, run_benchmark
from smcrypto.ecc import is_on_curve, multiply_base, n
from smcrypto.errors import (
    IntegrityError, InvalidPoint, InvalidScalar, MalformedCiphertext,
    MalformedSignature, RNGExhausted, SessionError
)
from smcrypto.sm2_cipher import C1C2C3, C1C3C2, CipherOptions, decrypt, encrypt
from smcrypto.sm2_exchange import KeyExchangeSession, calculate_shared_key, ecdh
from smcrypto.sm2_keys import (
    PrivateKey, PublicKey, compare_public_keys, compress_public_key,
    decompress_public_key, generate_key_pair, get_public_key, key_pair_from_seed,
    verify_public_key
)
from smcrypto.sm2_sign import (
    DEFAULT_USER_ID, PointPool, PoolPoint, SignOptions, VerifyOptions,
    calculate_z, get_hash, precompute_public_key, sign, verify
)
from smcrypto.utils import bytes_to_int, int_to_bytes


class TestSM2Keys(unittest.TestCase):
    """测试SM2密钥管理"""

    def test_key_generation(self):
        """测试密钥生成"""
        private, public = generate_key_pair()
        self.assertTrue(1 <= private.d <= n - 1)
        # 验证公钥是否在椭圆曲线上
        self.assertTrue(is_on_curve(public.point))
        self.assertEqual(private.public_key(), public)

    def test_injected_rng(self):
        """相同种子的随机数源生成相同密钥"""
        kp1 = generate_key_pair(random.Random(99))
        kp2 = generate_key_pair(random.Random(99))
        self.assertEqual(kp1.private, kp2.private)
        self.assertEqual(kp1.public, kp2.public)

    def test_seeded_key_pair(self):
        """种子可以是整数、十进制或0x十六进制字符串"""
        kp = key_pair_from_seed(123)
        self.assertEqual(kp.private.d, 124)
        self.assertEqual(key_pair_from_seed("123").private, kp.private)
        self.assertEqual(key_pair_from_seed("0x7b").private, kp.private)
        self.assertEqual(key_pair_from_seed(n - 1).private.d, 1)
        with self.assertRaises(ValueError):
            key_pair_from_seed("not a number")

    def test_private_key_range(self):
        for bad in (0, n, n + 5):
            with self.assertRaises(InvalidScalar):
                PrivateKey(bad)
        with self.assertRaises(InvalidScalar):
            PrivateKey.from_bytes(b"\x01" * 31)
        with self.assertRaises(InvalidScalar):
            PrivateKey.from_bytes(b"\x00" * 32)

    def test_private_key_serialization(self):
        private, public = key_pair_from_seed(2024)
        raw = private.to_bytes()
        self.assertEqual(len(raw), 32)
        self.assertEqual(PrivateKey.from_bytes(raw), private)
        self.assertEqual(PrivateKey.from_hex(private.to_hex()), private)
        self.assertEqual(get_public_key(private.to_hex()), public)
        self.assertEqual(get_public_key(raw), public)
        self.assertNotIn(private.to_hex(), repr(private))

    def test_compress_decompress(self):
        """decompress(compress(Q)) == Q"""
        for seed in range(1, 11):
            public = key_pair_from_seed(seed).public
            raw = public.to_bytes()
            compressed = compress_public_key(raw)
            self.assertEqual(len(compressed), 33)
            self.assertEqual(decompress_public_key(compressed), raw)
            self.assertEqual(PublicKey.from_bytes(compressed), public)
            self.assertEqual(compress_public_key(raw.hex()), compressed)

    def test_compress_already_compressed(self):
        compressed = key_pair_from_seed(5).public.to_bytes(compressed=True)
        with self.assertRaises(InvalidPoint):
            compress_public_key(compressed)

    def test_verify_public_key(self):
        public = key_pair_from_seed(8).public
        self.assertTrue(verify_public_key(public))
        self.assertTrue(verify_public_key(public.to_bytes()))
        self.assertTrue(verify_public_key(public.to_hex(compressed=True)))
        raw = public.to_bytes()
        self.assertFalse(verify_public_key(raw[:-1] + bytes([raw[-1] ^ 1])))
        self.assertFalse(verify_public_key(b""))
        self.assertFalse(verify_public_key("zz"))
        self.assertFalse(verify_public_key(b"\x04" + b"\xff" * 64))

    def test_compare_public_keys(self):
        """比较仿射坐标，与编码形式无关"""
        pub1 = key_pair_from_seed(10).public
        pub2 = key_pair_from_seed(11).public
        self.assertTrue(compare_public_keys(pub1.to_bytes(), pub1.to_bytes(compressed=True)))
        self.assertTrue(compare_public_keys(pub1.to_hex(), pub1))
        self.assertFalse(compare_public_keys(pub1, pub2))
        with self.assertRaises(InvalidPoint):
            compare_public_keys(pub1, b"\x04" + b"\x01" * 64)


class TestSM2Sign(unittest.TestCase):
    """测试SM2签名和验证"""

    def setUp(self):
        self.private, self.public = generate_key_pair()
        self.message = b"Test message for SM2 signature"

    def test_sign_verify(self):
        """测试签名和验证"""
        sig = sign(self.message, self.private)
        self.assertEqual(len(sig), 64)

        # 验证有效签名
        self.assertTrue(verify(self.message, sig, self.public))

        # 验证无效情况
        self.assertFalse(verify(b"Test message (tampered)", sig, self.public))
        r, s = bytes_to_int(sig[:32]), bytes_to_int(sig[32:])
        self.assertFalse(verify(self.message, int_to_bytes((r + 1) % n) + sig[32:], self.public))
        self.assertFalse(verify(self.message, sig[:32] + int_to_bytes((s + 1) % n), self.public))

    def test_unrelated_public_key(self):
        sig = sign(self.message, self.private)
        other = generate_key_pair().public
        self.assertFalse(verify(self.message, sig, other))

    def test_randomized(self):
        """同一消息多次签名结果不同，且都能通过验证"""
        sigs = {sign(self.message, self.private) for _ in range(5)}
        self.assertEqual(len(sigs), 5)
        for sig in sigs:
            self.assertTrue(verify(self.message, sig, self.public))

    def test_der(self):
        sig = sign(self.message, self.private, SignOptions(der=True))
        self.assertEqual(sig[0], 0x30)
        self.assertTrue(verify(self.message, sig, self.public, VerifyOptions(der=True)))
        with self.assertRaises(MalformedSignature):
            verify(self.message, sig, self.public)
        with self.assertRaises(MalformedSignature):
            verify(self.message, sig + b"\x00", self.public, VerifyOptions(der=True))

    def test_malformed_raw_signature(self):
        with self.assertRaises(MalformedSignature):
            verify(self.message, b"\x01" * 63, self.public)
        with self.assertRaises(MalformedSignature):
            verify(self.message, b"", self.public)

    def test_out_of_range(self):
        """r、s超出范围时返回False而不是抛出异常"""
        sig = sign(self.message, self.private)
        self.assertFalse(verify(self.message, int_to_bytes(0) + sig[32:], self.public))
        self.assertFalse(verify(self.message, int_to_bytes(n) + sig[32:], self.public))
        self.assertFalse(verify(self.message, sig[:32] + b"\xff" * 32, self.public))

    def test_der_out_of_range(self):
        """结构合法的DER签名，r、s超出范围时同样返回False"""
        sig = sign(self.message, self.private)
        r, s = bytes_to_int(sig[:32]), bytes_to_int(sig[32:])
        opts = VerifyOptions(der=True)
        for bad_r, bad_s in ((0, s), (n, s), (r, 0), (r, n), (-r, s)):
            self.assertFalse(verify(self.message, asn1.encode_signature(bad_r, bad_s), self.public, opts))

    def test_user_id(self):
        """签名与验签必须使用相同的用户ID"""
        opts = SignOptions(user_id=b"alice@example.com")
        sig = sign(self.message, self.private, opts)
        self.assertFalse(verify(self.message, sig, self.public))
        self.assertTrue(verify(self.message, sig, self.public,
                               VerifyOptions(user_id=b"alice@example.com")))
        # 不指定ID时使用默认ID
        sig = sign(self.message, self.private)
        self.assertTrue(verify(self.message, sig, self.public,
                               VerifyOptions(user_id=DEFAULT_USER_ID)))

    def test_prehashed(self):
        """hash=False时消息视为已计算好的e"""
        e = get_hash(self.message, self.public)
        sig = sign(e, self.private, SignOptions(hash=False))
        self.assertTrue(verify(self.message, sig, self.public))
        self.assertTrue(verify(e, sig, self.public, VerifyOptions(hash=False)))

    def test_string_message(self):
        sig = sign("中文消息", self.private)
        self.assertTrue(verify("中文消息".encode("utf-8"), sig, self.public))

    def test_z_value(self):
        z = calculate_z(self.public)
        self.assertEqual(len(z), 32)
        self.assertEqual(z, calculate_z(self.public, DEFAULT_USER_ID))
        self.assertNotEqual(z, calculate_z(self.public, b"other"))
        with self.assertRaises(ValueError):
            calculate_z(self.public, b"a" * 8192)

    def test_public_table(self):
        table = precompute_public_key(self.public)
        opts = VerifyOptions(public_table=table)
        for _ in range(3):
            sig = sign(self.message, self.private)
            self.assertTrue(verify(self.message, sig, self.public, opts))
        self.assertFalse(verify(b"other", sig, self.public, opts))

    def test_retry_exhausted(self):
        """r始终为0时有限次重试后报错"""
        with mock.patch("smcrypto.sm2_sign.get_point", return_value=PoolPoint(5, 0)):
            with self.assertRaises(RNGExhausted):
                sign(bytes(32), self.private, SignOptions(hash=False))


class TestSM2PointPool(unittest.TestCase):
    """测试签名预计算点池"""

    def test_pool_consumed(self):
        private, public = generate_key_pair()
        pool = PointPool(3)
        self.assertEqual(len(pool), 3)
        sigs = set()
        for _ in range(3):
            sigs.add(sign(b"pool", private, SignOptions(point_pool=pool)))
        self.assertEqual(len(pool), 0)
        self.assertEqual(len(sigs), 3)
        # 池空后退回现场生成
        sigs.add(sign(b"pool", private, SignOptions(point_pool=pool)))
        self.assertEqual(len(sigs), 4)
        for sig in sigs:
            self.assertTrue(verify(b"pool", sig, public))

    def test_pool_point(self):
        point = PointPool(1).take()
        self.assertIsInstance(point, PoolPoint)
        self.assertEqual(multiply_base(point.k)[0], point.x1)

    def test_concurrent_take(self):
        """多线程共享时每个点只被取出一次"""
        pool = PointPool(20, random.Random(3))
        taken = []
        lock = threading.Lock()

        def worker():
            while True:
                point = pool.take()
                if point is None:
                    return
                with lock:
                    taken.append(point.k)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(taken), 20)
        self.assertEqual(len(set(taken)), 20)

    def test_reused_k_leaks_private_key(self):
        """两次签名使用相同k时可以解出私钥"""
        private, _ = generate_key_pair()
        sig1 = sign(b"message 1", private, rng=random.Random(42))
        sig2 = sign(b"message 2", private, rng=random.Random(42))
        r1, s1 = bytes_to_int(sig1[:32]), bytes_to_int(sig1[32:])
        r2, s2 = bytes_to_int(sig2[:32]), bytes_to_int(sig2[32:])
        # d = (s2 - s1) / (s1 - s2 + r1 - r2) mod n
        d = (s2 - s1) * pow(s1 - s2 + r1 - r2, n - 2, n) % n
        self.assertEqual(d, private.d)


class TestSM2Cipher(unittest.TestCase):
    """测试SM2公钥加密"""

    def setUp(self):
        self.private, self.public = generate_key_pair()

    def test_roundtrip(self):
        """两种排列、是否ASN.1封装都能正确解密"""
        for layout in (C1C3C2, C1C2C3):
            for use_asn1 in (False, True):
                opts = CipherOptions(layout=layout, asn1=use_asn1)
                for msg in (b"", b"a", b"hello sm2" * 20):
                    ct = encrypt(msg, self.public, opts)
                    self.assertEqual(decrypt(ct, self.private, opts), msg)

    def test_layout(self):
        msg = b"layout check"
        ct = encrypt(msg, self.public)
        self.assertEqual(len(ct), 65 + 32 + len(msg))
        self.assertEqual(ct[0], 0x04)
        # 按另一种排列解密会失败
        with self.assertRaises(IntegrityError):
            decrypt(ct, self.private, CipherOptions(layout=C1C2C3))

    def test_randomized(self):
        msg = b"same message"
        self.assertNotEqual(encrypt(msg, self.public), encrypt(msg, self.public))

    def test_tampered(self):
        """C2或C3被篡改时抛出IntegrityError"""
        msg = b"integrity protected"
        ct = bytearray(encrypt(msg, self.public))
        bad_c3 = bytes(ct[:70]) + bytes([ct[70] ^ 1]) + bytes(ct[71:])
        with self.assertRaises(IntegrityError):
            decrypt(bad_c3, self.private)
        bad_c2 = bytes(ct[:-1]) + bytes([ct[-1] ^ 1])
        with self.assertRaises(IntegrityError):
            decrypt(bad_c2, self.private)

    def test_wrong_private_key(self):
        ct = encrypt(b"for someone else", self.public)
        with self.assertRaises(IntegrityError):
            decrypt(ct, generate_key_pair().private)

    def test_malformed(self):
        ct = encrypt(b"malformed", self.public)
        with self.assertRaises(MalformedCiphertext):
            decrypt(ct[:96], self.private)
        with self.assertRaises(MalformedCiphertext):
            decrypt(b"\x02" + ct[1:], self.private)
        with self.assertRaises(MalformedCiphertext):
            decrypt(ct, self.private, CipherOptions(asn1=True))
        # C1不在曲线上
        with self.assertRaises(InvalidPoint):
            decrypt(ct[:64] + bytes([ct[64] ^ 1]) + ct[65:], self.private)

    def test_string_keys(self):
        ct = encrypt(b"hex keys", self.public.to_hex(compressed=True))
        self.assertEqual(decrypt(ct, self.private.to_hex()), b"hex keys")

    def test_kdf_all_zero(self):
        """KDF输出全0时重试，超过次数报错"""
        with mock.patch("smcrypto.sm2_cipher.sm3_kdf", side_effect=lambda z, klen: bytes(klen)):
            with self.assertRaises(RNGExhausted):
                encrypt(b"zero", self.public)


class TestSM2KeyExchange(unittest.TestCase):
    """测试SM2密钥交换"""

    def setUp(self):
        self.static_a = generate_key_pair()
        self.static_b = generate_key_pair()
        self.ephemeral_a = generate_key_pair()
        self.ephemeral_b = generate_key_pair()

    def _keys(self, a_responder=False, b_responder=True, id_a=None, id_b=None, id_b_seen_by_a=None):
        k_a = calculate_shared_key(self.static_a, self.ephemeral_a,
                                   self.static_b.public, self.ephemeral_b.public,
                                   48, a_responder, id_a, id_b_seen_by_a or id_b)
        k_b = calculate_shared_key(self.static_b, self.ephemeral_b,
                                   self.static_a.public, self.ephemeral_a.public,
                                   48, b_responder, id_b, id_a)
        return k_a, k_b

    def test_agreement(self):
        k_a, k_b = self._keys()
        self.assertEqual(len(k_a), 48)
        self.assertEqual(k_a, k_b)
        k_a, k_b = self._keys(id_a=b"alice", id_b=b"bob")
        self.assertEqual(k_a, k_b)

    def test_wrong_role(self):
        """双方都作为发起方时得到不同的密钥"""
        k_a, k_b = self._keys(b_responder=False)
        self.assertNotEqual(k_a, k_b)

    def test_identity_mismatch(self):
        k_a, k_b = self._keys(id_a=b"alice", id_b=b"bob", id_b_seen_by_a=b"mallory")
        self.assertNotEqual(k_a, k_b)

    def test_key_length(self):
        with self.assertRaises(ValueError):
            calculate_shared_key(self.static_a, self.ephemeral_a,
                                 self.static_b.public, self.ephemeral_b.public, 0)

    def test_session(self):
        """完整协商流程及密钥确认"""
        alice = KeyExchangeSession(self.static_a, identity=b"alice")
        bob = KeyExchangeSession(self.static_b, is_responder=True, identity=b"bob")

        k_b = bob.derive(self.static_a.public, alice.ephemeral_public_key, 16, b"alice")
        k_a = alice.derive(self.static_b.public, bob.ephemeral_public_key, 16, b"bob")
        self.assertEqual(k_a, k_b)

        s_b, expected_by_bob = bob.confirmation()
        self.assertTrue(alice.check_confirmation(s_b))
        s_a, _ = alice.confirmation()
        self.assertEqual(s_a, expected_by_bob)
        self.assertTrue(bob.check_confirmation(s_a))
        self.assertNotEqual(s_a, s_b)
        self.assertFalse(bob.check_confirmation(s_b))

    def test_session_single_use(self):
        alice = KeyExchangeSession(self.static_a)
        bob = KeyExchangeSession(self.static_b, is_responder=True)
        with self.assertRaises(SessionError):
            alice.confirmation()
        alice.derive(self.static_b.public, bob.ephemeral_public_key, 16)
        with self.assertRaises(SessionError):
            alice.derive(self.static_b.public, bob.ephemeral_public_key, 16)

    def test_ecdh(self):
        shared_a = ecdh(self.static_a.private, self.static_b.public)
        shared_b = ecdh(self.static_b.private, self.static_a.public.to_bytes(compressed=True))
        self.assertEqual(len(shared_a), 32)
        self.assertEqual(shared_a, shared_b)


class TestBenchmark(unittest.TestCase):
    """测试性能测试入口"""

    def test_run_benchmark(self):
        results = run_benchmark(rounds=2)
        for name in ("sign", "sign_pool", "verify", "verify_table", "encrypt", "decrypt"):
            self.assertIn(name, results)
            self.assertGreaterEqual(results[name], 0)

    def test_main(self):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            benchmark_main(["1"])
        self.assertIn("功能验证通过", out.getvalue())

    def test_failed_check_raises(self):
        """功能验证失败时抛出RuntimeError，不输出通过信息"""
        out = io.StringIO()
        with mock.patch("smcrypto.benchmark.verify", return_value=False), \
                contextlib.redirect_stdout(out):
            with self.assertRaises(RuntimeError):
                benchmark_main(["1"])
        self.assertNotIn("功能验证通过", out.getvalue())


if __name__ == "__main__":
    unittest.main(verbosity=2)
