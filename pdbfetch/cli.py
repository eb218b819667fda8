"""Command line tool that downloads the PDB files named by a PE image."""

from __future__ import annotations

import logging
import os
import shutil
import sys
import urllib.error
import urllib.request
from contextlib import closing
from enum import IntEnum
from pathlib import Path, PureWindowsPath

from pdbfetch.guid import Guid
from pdbfetch.pefile import open_pe
from pdbfetch.structures import IMAGE_DEBUG_TYPE_CODEVIEW, PEFormatError

log = logging.getLogger(__name__)

USER_AGENT = "Microsoft-Symbol-Server/10.0.10522.521"
REQUEST_TIMEOUT = 30.0

# The symbol server is taken from this environment variable at call time.
SYMBOL_SERVER_ENV = "PDBFETCH_SYMBOL_SERVER"
DEFAULT_SYMBOL_SERVER = "http://localhost/download/symbols"

_HTTP_OK = 200
_HTTP_NOT_FOUND = 404


class Probe(IntEnum):
    """How a symbol URL is rewritten before it is requested."""

    DIRECT = 0
    UNDERSCORE = 1
    FILEPTR = 2


def probe_with_underscore(url: str) -> str:
    """Replace the last character of ``url`` with ``_`` (compressed symbol)."""
    return url[:-1] + "_"


def probe_with_fileptr(url: str) -> str:
    """Insert ``file.ptr`` after the last ``/`` of ``url``."""
    index = url.rindex("/")
    return url[:index] + "/file.ptr" + url[index + 1 :]


_REWRITES = {
    Probe.UNDERSCORE: probe_with_underscore,
    Probe.FILEPTR: probe_with_fileptr,
}


def send_request(url: str, head: bool = False, probe: Probe = Probe.DIRECT):
    """Request ``url`` as the given probe; HTTP error replies are returned, not raised."""
    rewrite = _REWRITES.get(Probe(probe))
    target = rewrite(url) if rewrite is not None else url
    request = urllib.request.Request(
        target,
        method="HEAD" if head else "GET",
        headers={"User-Agent": USER_AGENT},
    )
    try:
        return urllib.request.urlopen(request, timeout=REQUEST_TIMEOUT)
    except urllib.error.HTTPError as error:
        return error


def _content_length(response) -> int:
    value = response.headers.get("Content-Length")
    return int(value) if value is not None else -1


def read_fileptr(body) -> tuple[int, str]:
    """Read a ``file.ptr`` reply; return the size and path of the file it names.

    Returns ``(0, "")`` when the reply names no path.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, (bytes, bytearray)) else str(body)
    log.info("%s", text)
    if "PATH:" not in text:
        return 0, ""
    path = text[6:]
    return os.stat(path).st_size, path


def download_symbol_file(path, url: str) -> None:
    """Download the symbol at ``url`` to ``path``, trying the server's fallbacks.

    Raises :class:`LookupError` when the server has no such symbol.
    """
    total_size = 0
    probe = Probe.DIRECT

    with closing(send_request(url, True, probe)) as response:
        status, length = response.status, _content_length(response)

    if status == _HTTP_NOT_FOUND:
        probe = Probe.UNDERSCORE
        with closing(send_request(url, True, probe)) as response:
            status, length = response.status, _content_length(response)

    if status == _HTTP_OK:
        total_size += length

    if status == _HTTP_NOT_FOUND:
        probe = Probe.FILEPTR
        with closing(send_request(url, False, probe)) as response:
            if response.status == _HTTP_OK:
                fileptr_size, fileptr_path = read_fileptr(response.read())
                if fileptr_size > 0:
                    total_size += fileptr_size
                    url = fileptr_path

    if total_size == 0:
        raise LookupError("symbol not found on server")

    log.info("PDB size: %d KiB", int(total_size / 1024))

    if probe == Probe.FILEPTR:
        source = open(url, "rb")
    else:
        source = send_request(url, False, probe)
        if source.status != _HTTP_OK:
            source.close()
            raise LookupError(f"symbol download failed with status {source.status}")

    log.info("Saving PDB to %s", path)
    with closing(source), open(path, "wb") as out:
        shutil.copyfileobj(source, out)


def symbol_download_url(pdb_name: str, guid: Guid, age: int) -> str:
    """Return the symbol server URL of a PDB 7.0 file."""
    server = os.environ.get(SYMBOL_SERVER_ENV, DEFAULT_SYMBOL_SERVER).rstrip("/")
    key = guid.format("N").upper() + format(age, "x").upper()
    return f"{server}/{pdb_name}/{key}/{pdb_name}"


def help_text(program: str) -> str:
    """Return the usage text for ``program``."""
    lines = [
        "Fetches PDB symbol files directly from Microsoft's symbol servers.",
        "A PE file is supplied by the `pefile` argument.",
        "An optional save directory can be supplied by the `directory` argument.",
        f"The symbol server is read from the {SYMBOL_SERVER_ENV} environment variable.",
        "",
        "Usage:",
        f"    {program} pefile [directory]",
        "Example:",
    ]
    if sys.platform == "win32":
        lines.append(f'    {program} ExamplePE.exe "C:\\symbols"')
    elif sys.platform.startswith("linux"):
        lines.append(f'    {program} ExamplePE.exe "/usr/share/symbols"')
    lines += [
        "",
        "Flags:",
        "    -help \t display help information",
    ]
    return "\n".join(lines) + "\n"


def _fetch_symbols(pe_path: Path, save_directory: Path) -> None:
    image = open_pe(pe_path)
    for directory in image.debug_directories:
        if directory.type != IMAGE_DEBUG_TYPE_CODEVIEW or directory.info_pdb70 is None:
            continue
        info = directory.info_pdb70
        guid = Guid.from_windows_bytes(info.signature)
        symbol_name = directory.symbol_name.decode("utf-8", errors="replace")
        pdb_name = PureWindowsPath(symbol_name).name
        age = format(info.age, "x")
        url = symbol_download_url(pdb_name, guid, info.age)
        log.info("%s: %s %s %s", symbol_name, guid, age, url)

        download_dir = save_directory / pdb_name / (guid.format("N").upper() + age.upper())
        download_dir.mkdir(parents=True, exist_ok=True)
        download_symbol_file(download_dir / pdb_name, url)


def main(argv=None) -> int:
    """Run the command; return the process exit status."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    args = list(sys.argv[1:] if argv is None else argv)
    program = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "pdbfetch"

    if not args:
        log.error("executable file path not supplied")
        print(help_text(program), end="")
        return 1
    if args[0] in ("-help", "--help"):
        print(help_text(program), end="")
        return 0

    pe_path = Path(args[0])
    if len(args) > 1:
        save_directory = Path(args[1])
    else:
        save_directory = Path(sys.argv[0] or ".").resolve().parent

    if not pe_path.exists():
        log.error("pe file does not exist")
        return 1

    try:
        _fetch_symbols(pe_path, save_directory)
    except (PEFormatError, OSError, LookupError) as error:
        log.error("%s", error)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())