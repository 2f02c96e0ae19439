"""
Proving Backends — circuit artifact loading and the opaque prover capability.

The solvency engine treats the proving stack as three calls:

    execute(inputs)                -> witness bytes
    prove(witness)                 -> proof bytes
    verify(proof, public_inputs)   -> bool

``NoirCliBackend`` implements them by driving the Noir toolchain binaries
(``nargo`` for witness execution, ``bb`` for UltraHonk proving and
verification) as subprocesses. Construction fails fast when the artifact
or the binaries are missing, which is what lets the engine pick its mode
once at initialization instead of discovering it mid-proof.

Build the circuit:
    cd circuits/solvency_proof
    nargo compile
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

CIRCUIT_NAME = "solvency_proof"

# Conventional artifact locations, tried in order after any configured path.
_PACKAGE_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_ARTIFACT_PATHS: List[Path] = [
    _PACKAGE_ROOT / "circuits" / f"{CIRCUIT_NAME}.json",
    Path.cwd() / "circuits" / CIRCUIT_NAME / "target" / f"{CIRCUIT_NAME}.json",
]


class CircuitArtifactError(Exception):
    """The compiled circuit could not be found or parsed."""


class BackendUnavailableError(Exception):
    """The proving toolchain cannot be constructed in this environment."""


class BackendExecutionError(Exception):
    """A toolchain invocation failed during execute/prove/verify."""


# ═══════════════════════════════════════════════════════════════════════════════
# CIRCUIT ARTIFACT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CircuitArtifact:
    """Compiled circuit as emitted by ``nargo compile`` (JSON)."""
    name: str
    bytecode: str
    abi: Dict[str, Any] = field(default_factory=dict)
    noir_version: str = ""
    path: Optional[Path] = None

    @classmethod
    def load(cls, path: Path) -> "CircuitArtifact":
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise CircuitArtifactError(f"Circuit artifact not found at {path}") from None
        except (OSError, json.JSONDecodeError) as exc:
            raise CircuitArtifactError(f"Unreadable circuit artifact {path}: {exc}") from exc

        if not isinstance(raw, dict) or not isinstance(raw.get("bytecode"), str) or not raw["bytecode"]:
            raise CircuitArtifactError(f"Circuit artifact {path} has no bytecode")

        return cls(
            name=str(raw.get("name") or path.stem),
            bytecode=raw["bytecode"],
            abi=raw.get("abi") or {},
            noir_version=str(raw.get("noir_version", "")),
            path=path,
        )

    @classmethod
    def discover(cls, configured: Optional[str] = None) -> "CircuitArtifact":
        """Load from the configured path, else the first conventional path that exists."""
        candidates: List[Path] = [Path(configured)] if configured else list(DEFAULT_ARTIFACT_PATHS)
        errors: List[str] = []
        for candidate in candidates:
            try:
                return cls.load(candidate)
            except CircuitArtifactError as exc:
                errors.append(str(exc))
        raise CircuitArtifactError(
            "Circuit artifact not found. Run `nargo compile` first. " + "; ".join(errors)
        )


# ═══════════════════════════════════════════════════════════════════════════════
# BACKEND CAPABILITY
# ═══════════════════════════════════════════════════════════════════════════════

class ProvingBackend(ABC):
    """Opaque proving capability bound to one circuit."""

    name: str = "abstract"

    @abstractmethod
    async def execute(self, inputs: Dict[str, str]) -> bytes:
        """Solve the circuit for ``inputs`` and return the serialized witness."""
        ...

    @abstractmethod
    async def prove(self, witness: bytes) -> bytes:
        ...

    @abstractmethod
    async def verify(self, proof: bytes, public_inputs: Sequence[str]) -> bool:
        ...

    async def aclose(self) -> None:
        """Release scratch files and processes. Safe to call more than once."""
        return None


class NoirCliBackend(ProvingBackend):
    """
    UltraHonk proving through the ``nargo`` and ``bb`` command-line tools.

    Witness execution needs the Noir project. It runs in a private copy of
    the project inside the instance's work directory, so the caller's
    Prover.toml is never touched. Every call gets its own prover file and
    witness name, so concurrent calls on one instance cannot collide.
    Proving and verification only need the compiled artifact. The
    verification key is written once per instance. ``aclose`` removes the
    work directory.
    """

    name = "noir-cli"

    def __init__(
        self,
        artifact: CircuitArtifact,
        project_dir: Optional[str] = None,
        nargo_binary: str = "nargo",
        bb_binary: str = "bb",
    ) -> None:
        if artifact.path is None:
            raise BackendUnavailableError("Artifact has no on-disk path for the bb CLI")

        nargo = shutil.which(nargo_binary)
        bb = shutil.which(bb_binary)
        if nargo is None or bb is None:
            missing = [b for b, found in ((nargo_binary, nargo), (bb_binary, bb)) if found is None]
            raise BackendUnavailableError(f"Proving toolchain not on PATH: {', '.join(missing)}")

        self.project_dir = Path(project_dir) if project_dir else artifact.path.parent.parent
        if not (self.project_dir / "Nargo.toml").exists():
            raise BackendUnavailableError(f"No Nargo.toml in {self.project_dir}")

        self.artifact = artifact
        self._nargo = nargo
        self._bb = bb
        self._workdir = Path(tempfile.mkdtemp(prefix="prism-bb-"))
        self._circuit_dir = self._workdir / "circuit"
        try:
            shutil.copytree(
                self.project_dir,
                self._circuit_dir,
                ignore=shutil.ignore_patterns("Prover*.toml", "*.gz", "proofs"),
            )
        except OSError as exc:
            shutil.rmtree(self._workdir, ignore_errors=True)
            raise BackendUnavailableError(f"Cannot stage Noir project {self.project_dir}: {exc}") from exc
        self._calls = itertools.count(1)
        self._vk_path: Optional[Path] = None

    def _scratch(self, tag: str) -> Path:
        path = self._workdir / f"{tag}-{next(self._calls)}"
        path.mkdir()
        return path

    async def execute(self, inputs: Dict[str, str]) -> bytes:
        name = f"prism_{next(self._calls)}"
        prover_path = self._circuit_dir / f"{name}.toml"
        witness_path = self._circuit_dir / "target" / f"{name}.gz"
        prover_path.write_text(
            "\n".join(f'{k} = "{v}"' for k, v in inputs.items()) + "\n", encoding="utf-8",
        )
        try:
            await self._run(self._nargo, "execute", name, "--prover-name", name, cwd=self._circuit_dir)
            return witness_path.read_bytes()
        finally:
            prover_path.unlink(missing_ok=True)
            witness_path.unlink(missing_ok=True)

    async def prove(self, witness: bytes) -> bytes:
        scratch = self._scratch("prove")
        try:
            witness_path = scratch / "witness.gz"
            witness_path.write_bytes(witness)
            await self._run(
                self._bb, "prove",
                "-b", str(self.artifact.path),
                "-w", str(witness_path),
                "-o", str(scratch),
            )
            return (scratch / "proof").read_bytes()
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    async def verify(self, proof: bytes, public_inputs: Sequence[str]) -> bool:
        vk_path = await self._verification_key()
        scratch = self._scratch("verify")
        try:
            (scratch / "proof").write_bytes(proof)
            (scratch / "public_inputs").write_bytes(_encode_public_inputs(public_inputs))
            await self._run(
                self._bb, "verify",
                "-k", str(vk_path),
                "-p", str(scratch / "proof"),
                "-i", str(scratch / "public_inputs"),
            )
        except BackendExecutionError as exc:
            logger.info(f"[SOLVENCY] bb verify rejected proof: {exc}")
            return False
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
        return True

    async def aclose(self) -> None:
        shutil.rmtree(self._workdir, ignore_errors=True)
        self._vk_path = None

    async def _verification_key(self) -> Path:
        if self._vk_path is None:
            out_dir = self._workdir / "vk"
            out_dir.mkdir(exist_ok=True)
            await self._run(self._bb, "write_vk", "-b", str(self.artifact.path), "-o", str(out_dir))
            self._vk_path = out_dir / "vk"
        return self._vk_path

    async def _run(self, *cmd: str, cwd: Optional[Path] = None) -> str:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise BackendExecutionError(
                f"{Path(cmd[0]).name} {cmd[1]} exited {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()[:500]}"
            )
        return stdout.decode(errors="replace")


def _encode_public_inputs(values: Sequence[str]) -> bytes:
    """Public inputs as consecutive 32-byte big-endian field elements."""
    return b"".join(int(v).to_bytes(32, "big") for v in values)
