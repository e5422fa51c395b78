"""
Tests for the nexus-proof command line.

Oracle and ledger endpoints are served by pytest-httpx; everything else
is tmp_path files.

Test plan:
- hash: content only, content + metadata (known vectors)
- keygen: stdout JSON, --output file
- attest: end to end over mocked HTTP, writes artifact and db row
- verify: VERIFIED exit 0 and report recorded; tampered content exit 1
- show: by checksum and by document id, not found exit 1
- Usage errors: no command, missing config, bad config exit 2
"""

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from pytest_httpx import HTTPXMock

from nexus_proof import cli
from nexus_proof.artifact import assemble, load_artifact, save_artifact
from nexus_proof.config import CONFIG_ENV_VAR
from nexus_proof.integrity import derive_identity
from nexus_proof.ledger.quorum import AggregateStatus, ChainStatus
from nexus_proof.ledger.tracker import ChainConfirmation
from nexus_proof.oracle.signing import (
    generate_signing_key,
    get_public_key_hex,
    private_key_from_hex,
    sign_report,
)
from nexus_proof.storage import ContentLocator
from nexus_proof.store import ProofStore
from nexus_proof.timestamps import now_utc

ORACLE = "https://oracle.example/v1"
RPC = "https://eth.example/rpc"
TX = "0x" + "ab" * 32
KEY = generate_signing_key()
CONTENT = b"hello world"
METADATA = {"type": "note"}
IDENTITY = derive_identity(CONTENT, METADATA)

HELLO_DOCUMENT_ID = "sha256:b00c64c4a83c24d76c1b8ea92f1326614dc8ddd2a8049345382f3d737e32d7e7"


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def files(tmp_path: Path) -> dict[str, Path]:
    content = tmp_path / "doc.txt"
    content.write_bytes(CONTENT)
    metadata = tmp_path / "meta.json"
    metadata.write_text(json.dumps(METADATA), encoding="utf-8")
    config = tmp_path / "engine.json"
    config.write_text(
        json.dumps(
            {
                "oracle": {
                    "base_url": ORACLE,
                    "authorized_keys": [get_public_key_hex(KEY)],
                    "poll_interval_s": 0.01,
                    "deadline_s": 5,
                    "retry": {"max_attempts": 1},
                },
                "ledgers": [
                    {
                        "chain_id": "evm:1",
                        "url": RPC,
                        "required_depth": 3,
                        "poll_interval_s": 0.01,
                        "retry": {"max_attempts": 1},
                    }
                ],
                "quorum": 1,
            }
        ),
        encoding="utf-8",
    )
    return {"content": content, "metadata": metadata, "config": config, "dir": tmp_path}


def _mock_ledger(httpx_mock: HTTPXMock, first_id: int = 1) -> None:
    httpx_mock.add_response(
        url=RPC,
        method="POST",
        match_json={
            "jsonrpc": "2.0",
            "method": "eth_getTransactionReceipt",
            "params": [TX],
            "id": first_id,
        },
        json={"jsonrpc": "2.0", "id": first_id, "result": {"blockNumber": "0x64", "status": "0x1"}},
    )
    httpx_mock.add_response(
        url=RPC,
        method="POST",
        match_json={"jsonrpc": "2.0", "method": "eth_blockNumber", "params": [], "id": first_id + 1},
        json={"jsonrpc": "2.0", "id": first_id + 1, "result": "0x6e"},
    )


def _artifact_file(directory: Path) -> Path:
    report = sign_report(
        KEY, "req-1", IDENTITY.document_id, "2026-03-01T12:00:00+00:00", relays={"evm:1": TX}
    )
    artifact = assemble(
        IDENTITY.document_id,
        ContentLocator("ipfs://bafyhello", IDENTITY.content_digest),
        IDENTITY.metadata_digest,
        report,
        {
            "evm:1": ChainConfirmation(
                "evm:1", ChainStatus.CONFIRMED, 3,
                transaction_ref=TX, block_height=100, confirmation_count=3,
            )
        },
        AggregateStatus.CONFIRMED,
        quorum=1,
        created_at="2026-03-01T12:05:00+00:00",
    )
    path = directory / "proof.json"
    save_artifact(artifact, path)
    return path


def _stdout_json(capsys: pytest.CaptureFixture[str]) -> Any:
    return json.loads(capsys.readouterr().out)


# ---------------------------------------------------------------------------
# hash / keygen
# ---------------------------------------------------------------------------


class TestHash:
    def test_content_only(self, files: dict[str, Path], capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main(["hash", "--content", str(files["content"])]) == cli.EXIT_OK
        assert _stdout_json(capsys) == {"content_digest": IDENTITY.content_digest.prefixed}

    def test_with_metadata(self, files: dict[str, Path], capsys: pytest.CaptureFixture[str]) -> None:
        argv = ["hash", "--content", str(files["content"]), "--metadata", str(files["metadata"])]
        assert cli.main(argv) == cli.EXIT_OK
        assert _stdout_json(capsys)["document_id"] == HELLO_DOCUMENT_ID

    def test_missing_file(self, tmp_path: Path) -> None:
        assert cli.main(["hash", "--content", str(tmp_path / "nope")]) == cli.EXIT_USAGE


class TestKeygen:
    def test_stdout(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main(["keygen"]) == cli.EXIT_OK
        data = _stdout_json(capsys)
        assert get_public_key_hex(private_key_from_hex(data["private_key"])) == data["public_key"]

    def test_output_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        out = tmp_path / "key.json"
        assert cli.main(["keygen", "-o", str(out)]) == cli.EXIT_OK
        data = json.loads(out.read_text(encoding="utf-8"))
        assert capsys.readouterr().out.strip() == data["public_key"]


# ---------------------------------------------------------------------------
# attest / verify
# ---------------------------------------------------------------------------


class TestAttest:
    def test_end_to_end(
        self, files: dict[str, Path], httpx_mock: HTTPXMock
    ) -> None:
        report = sign_report(KEY, "req-1", IDENTITY.document_id, now_utc(), relays={"evm:1": TX})
        httpx_mock.add_response(
            url=f"{ORACLE}/requests",
            method="POST",
            json={"accepted": True, "request_id": "req-1"},
        )
        httpx_mock.add_response(
            url=f"{ORACLE}/requests/req-1",
            method="GET",
            json={"status": "finalized", "report": report.to_dict()},
        )
        _mock_ledger(httpx_mock)

        out = files["dir"] / "out.json"
        db = files["dir"] / "proofs.db"
        code = cli.main([
            "attest",
            "-c", str(files["config"]),
            "--content", str(files["content"]),
            "--metadata", str(files["metadata"]),
            "-o", str(out),
            "--db", str(db),
        ])

        assert code == cli.EXIT_OK
        artifact = load_artifact(out)
        assert artifact.document_id == IDENTITY.document_id
        assert artifact.aggregate_status == AggregateStatus.CONFIRMED
        assert artifact.content_locator.uri.startswith("file://")
        assert ProofStore(db).get_artifact(artifact.artifact_checksum.prefixed) == artifact


class TestVerify:
    def test_verified(
        self,
        files: dict[str, Path],
        httpx_mock: HTTPXMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        _mock_ledger(httpx_mock)
        artifact_path = _artifact_file(files["dir"])
        db = files["dir"] / "proofs.db"

        code = cli.main([
            "verify",
            "-c", str(files["config"]),
            "-A", str(artifact_path),
            "--content", str(files["content"]),
            "--metadata", str(files["metadata"]),
            "--db", str(db),
        ])

        assert code == cli.EXIT_OK
        assert _stdout_json(capsys)["verdict"] == "VERIFIED"
        checksum = load_artifact(artifact_path).artifact_checksum.prefixed
        assert [row["verdict"] for row in ProofStore(db).list_verifications(checksum)] == [
            "VERIFIED"
        ]

    def test_tampered_content(
        self,
        files: dict[str, Path],
        httpx_mock: HTTPXMock,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        _mock_ledger(httpx_mock)
        artifact_path = _artifact_file(files["dir"])
        files["content"].write_bytes(b"hello world, edited")

        code = cli.main([
            "verify",
            "-c", str(files["config"]),
            "-A", str(artifact_path),
            "--content", str(files["content"]),
        ])

        assert code == cli.EXIT_FAILED
        assert "content_digest" in _stdout_json(capsys)["failed_stages"]


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


class TestShow:
    def test_by_checksum_and_document(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        artifact = load_artifact(_artifact_file(tmp_path))
        db = tmp_path / "proofs.db"
        ProofStore(db).put_artifact(artifact)

        assert cli.main(["show", "--db", str(db), "--checksum", artifact.artifact_checksum.prefixed]) == 0
        assert _stdout_json(capsys)["artifact_checksum"] == artifact.artifact_checksum.prefixed

        assert cli.main(["show", "--db", str(db), "--document-id", artifact.document_id.prefixed]) == 0
        assert _stdout_json(capsys)["document_id"] == artifact.document_id.prefixed

    def test_not_found(self, tmp_path: Path) -> None:
        db = tmp_path / "proofs.db"
        assert cli.main(["show", "--db", str(db), "--checksum", "sha256:" + "0" * 64]) == cli.EXIT_FAILED


# ---------------------------------------------------------------------------
# Usage errors
# ---------------------------------------------------------------------------


class TestUsage:
    def test_no_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main([]) == cli.EXIT_USAGE
        assert "usage" in capsys.readouterr().out.lower()

    def test_missing_config(
        self, files: dict[str, Path], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        argv = ["attest", "--content", str(files["content"]), "--metadata", str(files["metadata"])]
        assert cli.main(argv) == cli.EXIT_USAGE

    def test_invalid_config(self, files: dict[str, Path], tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"oracle": {}, "ledgers": []}), encoding="utf-8")
        argv = ["verify", "-c", str(bad), "-A", str(tmp_path / "proof.json")]
        assert cli.main(argv) == cli.EXIT_USAGE
