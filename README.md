# pdbfetch

Fetch PDB symbol files for Windows PE images from a symbol server, and parse
PE images and COFF object files in pure Python.

pdbfetch reads a PE file (an `.exe`, `.dll` or `.sys`). It finds the CodeView
PDB 7.0 ("RSDS") records in the debug directory, builds the symbol-server path
from each PDB name, GUID and age, and downloads the matching `.pdb`.

## Installation

```
pip install .
```

No third-party libraries are needed. The tests use pytest
(`pip install .[test]`).

## Command line

```
pdbfetch pefile [directory]
```

- `pefile` is the PE image to look up.
- `directory` is where the symbols are saved. If you leave it out, they are
  saved in the directory that holds the program being run.

Each PDB is saved under `directory/<pdb name>/<GUID><AGE>/<pdb name>`, the
layout a symbol store uses.

The symbol server is taken from the `PDBFETCH_SYMBOL_SERVER` environment
variable. If it is not set, `http://localhost/download/symbols` is used:

```
PDBFETCH_SYMBOL_SERVER=http://localhost/download/symbols pdbfetch example.dll symbols
```

For each symbol the command first sends a `HEAD` request for the plain URL.
If that gives 404 it tries the URL with its last character replaced by `_`
(the compressed form). If that also gives 404 it asks for `file.ptr` in the
same directory. When that reply holds `PATH:`, the file at that local path is
copied. Requests carry the symbol-server user agent and time out after 30
seconds.

`pdbfetch -help` (or `--help`) prints the usage text. The command exits with
status 0 on success. It exits with 1 when no PE file is given, when the file
does not exist, when it cannot be parsed, or when a symbol is not found on the
server. Progress and errors are logged to standard error.

## Library use

Find the download URLs of the PDBs named by an image:

```python
from pathlib import PureWindowsPath

from pdbfetch.cli import symbol_download_url
from pdbfetch.guid import Guid
from pdbfetch.pefile import open_pe

image = open_pe("example.dll")
for entry in image.debug_directories:
    info = entry.info_pdb70
    if info is None:
        continue
    guid = Guid.from_windows_bytes(info.signature)
    pdb_name = PureWindowsPath(entry.symbol_name.decode()).name
    print(symbol_download_url(pdb_name, guid, info.age))
```

`pdbfetch.cli.download_symbol_file(path, url)` runs the same download steps as
the command. It raises `LookupError` when the server has no such symbol.

### Modules

- `pdbfetch.pefile`: `open_pe` / `parse_pe` read a PE image and `open_object`
  / `parse_object` read a COFF object file, from a path or from bytes. Each
  returns a `PEFile` with its headers, symbol table, sections (sorted by
  virtual address), import descriptors, export directory and debug
  directories. `PEFile` also translates addresses with `offset_from_rva`,
  `rva_from_offset`, `section_by_rva`, `section_by_offset` and `data_bounds`,
  and reads NUL-terminated strings with `string_at_rva` and
  `string_from_data`. Malformed input raises `PEFormatError`.
- `pdbfetch.directories`: the parsers for the debug, export and import
  directories that `PEFile` runs. Ordinal imports from `ws2_32.dll`,
  `wsock32.dll` and `oleaut32.dll` get their function names.
- `pdbfetch.structures`: the PE header and directory records as dataclasses,
  read with `Structure.unpack_from(data, offset)`, listed field by field with
  `describe()`, plus the format's constants and `set_flags` / `flag_string`.
- `pdbfetch.extra_structures`: further records (base relocations, resources,
  version info, TLS, load configuration, delay and bound imports) with the
  same interface.
- `pdbfetch.guid`: `Guid` converts to and from its big-endian and Windows byte
  forms. It parses the `xxxxxxxx-xxxx-xxxx-xxxx-xxxxxxxxxxxx` form and formats
  as `N`, `D`, `B`, `P` or `X`.
- `pdbfetch.ordinals`: `ord_lookup(libname, ordinal, make_name)` gives the
  name of a known ordinal export.
- `pdbfetch.util`: alignment helpers and the name checks used while parsing.

## What it does not do

- Compressed symbols (found through the `_` URL) are saved exactly as the
  server sends them. They are not expanded.
- Only PDB 7.0 records are downloaded. PDB 2.0 ("NB10") records are parsed
  but not fetched.
- `PEFile` parses only the import, export and debug directories. The records
  in `pdbfetch.extra_structures` can be read with `unpack_from`, but no
  resource, relocation, TLS, load-configuration, delay-import or bound-import
  directory is walked.
- There is no local symbol cache and no retry. A symbol already on disk is
  downloaded again.