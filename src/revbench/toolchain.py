"""Toolchain installation for a revision.

A toolchain is the built compiler for one revision and target triple.
:class:`ArtifactInstaller` downloads prebuilt archives produced by CI and
unpacks them under the toolchains directory; :class:`LocalInstaller`
wraps a compiler the caller has already built.  Either way the result is
a :class:`ToolchainHandle`, which removes what it installed when closed
unless asked to preserve it.
"""

from __future__ import annotations

import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from types import TracebackType
from typing import Callable, Protocol

import requests

from revbench.errors import InstallError
from revbench.logging import get_logger
from revbench.revisions import Revision

log = get_logger("toolchain")

_USER_AGENT = "revbench (compiler performance collector)"
_CHUNK_SIZE = 1 << 20


@dataclass
class ToolchainHandle:
    """An installed toolchain ready to run benchmarks."""

    revision: Revision
    triple: str
    root: Path
    compiler: Path
    preserve: bool = False
    owned: bool = True  # False for caller-supplied toolchains

    def env(self) -> dict[str, str]:
        """Environment variables that point a benchmark at this toolchain."""
        return {
            "REVBENCH_COMPILER": str(self.compiler),
            "REVBENCH_TOOLCHAIN": str(self.root),
            "REVBENCH_TRIPLE": self.triple,
            "REVBENCH_REVISION": self.revision.id,
        }

    def cleanup(self) -> None:
        if not self.owned:
            return
        if self.preserve:
            log.info("Preserving toolchain at %s", self.root)
            return
        log.debug("Removing toolchain %s", self.root)
        shutil.rmtree(self.root, ignore_errors=True)

    def __enter__(self) -> ToolchainHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()


class Installer(Protocol):
    def install(self, revision: Revision, triple: str, preserve: bool) -> ToolchainHandle: ...


# ---------------------------------------------------------------------------
# Prebuilt artifacts
# ---------------------------------------------------------------------------


class ArtifactInstaller:
    """Installs toolchains from prebuilt tar archives.

    Each entry of *artifact_urls* is a template with ``{revision}`` and
    ``{triple}`` placeholders; it may be an ``http(s)://`` URL or a local
    path.  All archives are unpacked into the same directory, dropping
    the first *strip_components* path elements of every member.
    """

    def __init__(
        self,
        artifact_urls: list[str],
        toolchains_dir: Path,
        *,
        compiler_path: str = "bin/cc",
        strip_components: int = 1,
        timeout: float = 300.0,
    ) -> None:
        self.artifact_urls = artifact_urls
        self.toolchains_dir = toolchains_dir
        self.compiler_path = compiler_path
        self.strip_components = strip_components
        self.timeout = timeout

    def install(self, revision: Revision, triple: str, preserve: bool) -> ToolchainHandle:
        """Download and unpack the toolchain for *revision*.

        Raises:
            InstallError: If any artifact cannot be fetched or unpacked, or
                the compiler is missing afterwards.  Nothing is left on disk.
        """
        if not self.artifact_urls:
            raise InstallError("No artifact URLs configured")
        dest = self.toolchains_dir / f"{revision.id}-{triple}"
        log.info("Installing toolchain for %s (%s) into %s", revision.short, triple, dest)

        try:
            if dest.exists():
                # Left over from a preserved or interrupted run.
                shutil.rmtree(dest)
            dest.mkdir(parents=True)
            for template in self.artifact_urls:
                source = template.format(revision=revision.id, triple=triple)
                self._fetch_and_unpack(source, dest)
            compiler = dest / self.compiler_path
            if not compiler.is_file():
                raise InstallError(f"Compiler {self.compiler_path} not found in toolchain")
        except InstallError:
            shutil.rmtree(dest, ignore_errors=True)
            raise
        except OSError as exc:
            shutil.rmtree(dest, ignore_errors=True)
            raise InstallError(f"Cannot install toolchain into {dest}: {exc}") from exc

        return ToolchainHandle(
            revision=revision,
            triple=triple,
            root=dest,
            compiler=compiler,
            preserve=preserve,
        )

    def _fetch_and_unpack(self, source: str, dest: Path) -> None:
        if source.startswith(("http://", "https://")):
            with tempfile.TemporaryDirectory(prefix="revbench-dl-") as tmp:
                archive = Path(tmp) / "artifact.tar"
                download(source, archive, timeout=self.timeout)
                unpack(archive, dest, strip_components=self.strip_components)
        else:
            archive = Path(source)
            if not archive.is_file():
                raise InstallError(f"Artifact not found: {archive}")
            unpack(archive, dest, strip_components=self.strip_components)


def download(url: str, dest: Path, *, timeout: float = 300.0) -> None:
    """Stream *url* to *dest*.

    Raises:
        InstallError: On connection errors, timeouts, or a non-2xx status.
    """
    log.debug("Downloading %s", url)
    try:
        with requests.get(
            url, stream=True, timeout=timeout, headers={"User-Agent": _USER_AGENT}
        ) as resp:
            if resp.status_code == 404:
                raise InstallError(f"Artifact not available (HTTP 404): {url}")
            resp.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    f.write(chunk)
    except requests.Timeout as exc:
        raise InstallError(f"Timed out downloading {url}") from exc
    except requests.RequestException as exc:
        raise InstallError(f"Failed to download {url}: {exc}") from exc


def _strip_filter(strip: int) -> Callable[[tarfile.TarInfo, str], tarfile.TarInfo | None]:
    def _filter(member: tarfile.TarInfo, path: str) -> tarfile.TarInfo | None:
        parts = PurePosixPath(member.name).parts[strip:]
        if not parts:
            return None
        changes: dict[str, str] = {"name": str(PurePosixPath(*parts))}
        if member.islnk():
            link_parts = PurePosixPath(member.linkname).parts[strip:]
            if not link_parts:
                return None
            changes["linkname"] = str(PurePosixPath(*link_parts))
        return tarfile.data_filter(member.replace(**changes), path)

    return _filter


def unpack(archive: Path, dest: Path, *, strip_components: int = 0) -> None:
    """Extract a (possibly compressed) tar archive into *dest*.

    Raises:
        InstallError: If the archive is unreadable or unsafe.
    """
    try:
        with tarfile.open(archive, mode="r:*") as tar:
            tar.extractall(dest, filter=_strip_filter(strip_components))
    except (tarfile.TarError, OSError) as exc:
        raise InstallError(f"Cannot unpack {archive.name}: {exc}") from exc


# ---------------------------------------------------------------------------
# Caller-supplied compiler
# ---------------------------------------------------------------------------


class LocalInstaller:
    """Uses a compiler that is already built; nothing is installed or removed."""

    def __init__(self, compiler: Path) -> None:
        self.compiler = compiler

    def install(self, revision: Revision, triple: str, preserve: bool) -> ToolchainHandle:
        compiler = self.compiler.resolve()
        if not compiler.is_file():
            raise InstallError(f"Compiler not found: {self.compiler}")
        # <root>/bin/<compiler> is the usual layout; fall back to the binary's directory.
        root = compiler.parent.parent if compiler.parent.name == "bin" else compiler.parent
        return ToolchainHandle(
            revision=revision,
            triple=triple,
            root=root,
            compiler=compiler,
            preserve=preserve,
            owned=False,
        )
