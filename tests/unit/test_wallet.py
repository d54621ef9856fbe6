"""Unit tests for keypair loading."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from solders.keypair import Keypair

from solend_liquidator.config import WalletConfig
from solend_liquidator.wallet import load_keypair, parse_keypair


@pytest.fixture()
def keypair() -> Keypair:
    return Keypair()


class TestParseKeypair:
    def test_base58(self, keypair: Keypair) -> None:
        assert parse_keypair(str(keypair)).pubkey() == keypair.pubkey()

    def test_json_byte_array(self, keypair: Keypair) -> None:
        secret = json.dumps(list(bytes(keypair)))
        assert parse_keypair(secret).pubkey() == keypair.pubkey()

    def test_priv_key_object(self, keypair: Keypair) -> None:
        secret = json.dumps({"privKey": str(keypair)})
        assert parse_keypair(secret).pubkey() == keypair.pubkey()

    def test_object_without_priv_key_raises(self) -> None:
        with pytest.raises(ValueError, match="privKey"):
            parse_keypair('{"secret": "x"}')

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(ValueError, match="not valid JSON"):
            parse_keypair("[1, 2,")


class TestLoadKeypair:
    def test_env_wins_over_file(
        self, tmp_path: Path, keypair: Keypair, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        other = Keypair()
        secret_file = tmp_path / "keypair"
        secret_file.write_text(str(other))
        monkeypatch.setenv("TEST_KEYPAIR", str(keypair))

        loaded = load_keypair(
            WalletConfig(keypair_path=str(secret_file), keypair_env="TEST_KEYPAIR")
        )
        assert loaded.pubkey() == keypair.pubkey()

    def test_falls_back_to_file(
        self, tmp_path: Path, keypair: Keypair, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("TEST_KEYPAIR", raising=False)
        secret_file = tmp_path / "keypair"
        secret_file.write_text(json.dumps({"privKey": str(keypair)}) + "\n")

        loaded = load_keypair(
            WalletConfig(keypair_path=str(secret_file), keypair_env="TEST_KEYPAIR")
        )
        assert loaded.pubkey() == keypair.pubkey()

    def test_nothing_found_raises(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("TEST_KEYPAIR", raising=False)
        with pytest.raises(ValueError, match="No keypair found"):
            load_keypair(
                WalletConfig(
                    keypair_path=str(tmp_path / "missing"), keypair_env="TEST_KEYPAIR"
                )
            )
