"""Unit tests for token providers and the persisted token store."""

from __future__ import annotations

import json
import logging
import string
import threading

import pytest

from tabseal import tokens
from tabseal.envelope import EnvelopeCodec
from tabseal.errors import InvalidArgument, TokenStoreError
from tabseal.tokens import (
    FALLBACK_SIGN_KEY,
    FALLBACK_XOR_KEY,
    EnvTokenProvider,
    FileTokenStore,
    KeyPair,
    StaticTokenProvider,
    default_home,
    generate_key,
)


class TestKeyPair:
    def test_empty_keys_rejected(self):
        with pytest.raises(InvalidArgument):
            KeyPair("", "x")
        with pytest.raises(InvalidArgument):
            KeyPair("x", "")

    def test_is_immutable(self):
        pair = KeyPair("a", "b")
        with pytest.raises(AttributeError):
            pair.signing_key = "c"  # type: ignore[misc]

    def test_fallback(self):
        assert KeyPair.fallback() == KeyPair(FALLBACK_SIGN_KEY, FALLBACK_XOR_KEY)


class TestGenerateKey:
    def test_shape(self):
        key = generate_key()
        assert len(key) == 16
        assert set(key) <= set(string.ascii_letters + string.digits)

    def test_random(self):
        assert generate_key() != generate_key()


class TestStaticProvider:
    def test_returns_keys(self):
        provider = StaticTokenProvider("sign", "xor")
        assert provider.get_signing_key() == "sign"
        assert provider.get_obfuscation_key() == "xor"
        assert KeyPair.from_provider(provider) == KeyPair("sign", "xor")


class TestEnvProvider:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("TABSEAL_SIGN_KEY", "env-sign")
        monkeypatch.setenv("TABSEAL_XOR_KEY", "env-xor")
        provider = EnvTokenProvider()
        assert provider.using_fallback is False
        assert provider.get_signing_key() == "env-sign"
        assert provider.get_obfuscation_key() == "env-xor"

    def test_explicit_mapping(self):
        provider = EnvTokenProvider({"TABSEAL_SIGN_KEY": "a", "TABSEAL_XOR_KEY": "b"})
        assert KeyPair.from_provider(provider) == KeyPair("a", "b")

    def test_falls_back_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tabseal.tokens"):
            provider = EnvTokenProvider({"TABSEAL_SIGN_KEY": "only-one"})
        assert provider.using_fallback is True
        assert KeyPair.from_provider(provider) == KeyPair.fallback()
        assert "fallback" in caplog.text


class TestFileTokenStore:
    def test_fallback_until_initialized(self, tmp_path):
        store = FileTokenStore(tmp_path)
        assert not store.initialized
        assert store.get_signing_key() == FALLBACK_SIGN_KEY
        assert store.get_obfuscation_key() == FALLBACK_XOR_KEY
        assert not store.path.exists()

    def test_initialize_generates_and_persists(self, tmp_path):
        store = FileTokenStore(tmp_path / "nested")
        keys = store.initialize()
        assert store.initialized
        assert len(keys.signing_key) == 16
        assert len(keys.obfuscation_key) == 16
        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert data == {"sign_token": keys.signing_key, "xor_token": keys.obfuscation_key}
        assert store.get_signing_key() == keys.signing_key

    def test_reload_returns_same_keys(self, tmp_path):
        first = FileTokenStore(tmp_path).initialize()
        second = FileTokenStore(tmp_path).initialize()
        assert first == second

    def test_missing_entry_is_generated(self, tmp_path):
        (tmp_path / "tokens.json").write_text(json.dumps({"sign_token": "kept"}), encoding="utf-8")
        keys = FileTokenStore(tmp_path).initialize()
        assert keys.signing_key == "kept"
        assert len(keys.obfuscation_key) == 16
        data = json.loads((tmp_path / "tokens.json").read_text(encoding="utf-8"))
        assert data["xor_token"] == keys.obfuscation_key

    def test_corrupt_file_raises(self, tmp_path):
        (tmp_path / "tokens.json").write_text("{not json", encoding="utf-8")
        store = FileTokenStore(tmp_path)
        with pytest.raises(TokenStoreError):
            store.initialize()
        # No silent fallback once initialization was attempted.
        with pytest.raises(TokenStoreError):
            store.get_signing_key()

    def test_non_string_values_raise(self, tmp_path):
        (tmp_path / "tokens.json").write_text(json.dumps({"sign_token": 1, "xor_token": 2}), encoding="utf-8")
        with pytest.raises(TokenStoreError):
            FileTokenStore(tmp_path).initialize()

    def test_non_object_file_raises(self, tmp_path):
        (tmp_path / "tokens.json").write_text("[]", encoding="utf-8")
        with pytest.raises(TokenStoreError):
            FileTokenStore(tmp_path).initialize()

    def test_concurrent_initialize_is_single_flight(self, tmp_path, monkeypatch):
        calls = []
        real_generate = tokens.generate_key

        def counting_generate(length=16):
            calls.append(length)
            return real_generate(length)

        monkeypatch.setattr(tokens, "generate_key", counting_generate)
        store = FileTokenStore(tmp_path)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(store.initialize())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert len(set(results)) == 1
        assert len(calls) == 2  # one signing key, one obfuscation key

    def test_reader_waits_for_load_in_progress(self, tmp_path):
        loading = threading.Event()
        release = threading.Event()

        class SlowStore(FileTokenStore):
            def _load_or_create(self):
                loading.set()
                release.wait(5)
                return KeyPair("slow_sign", "slow_xor")

        store = SlowStore(tmp_path)
        loader = threading.Thread(target=store.initialize)
        loader.start()
        assert loading.wait(5)

        seen = []
        reader = threading.Thread(target=lambda: seen.append(store.get_signing_key()))
        reader.start()
        reader.join(0.05)
        release.set()
        reader.join()
        loader.join()

        assert seen == ["slow_sign"]

    def test_home_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TABSEAL_HOME", str(tmp_path / "custom"))
        assert default_home() == tmp_path / "custom"
        assert FileTokenStore().path == tmp_path / "custom" / "tokens.json"

    def test_codec_from_store(self, tmp_path):
        store = FileTokenStore(tmp_path)
        store.initialize()
        codec = EnvelopeCodec.from_provider(store)
        reader = EnvelopeCodec.from_provider(FileTokenStore(tmp_path))  # uninitialized: fallback
        sealed = codec.encode("cmd", "payload")
        assert codec.decode_payload(sealed) == "payload"
        assert reader.decode_payload(sealed) is None
