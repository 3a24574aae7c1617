"""
file_parser.py
==============

Robust conversion of **CSV / Excel** exports into `pandas.DataFrame`.

* file type decided from the MIME type and the extension
* CSV encodings guessed with **chardet**, then a fallback list is tried in turn
* header row cleaned (BOM, full-width spaces) and folded to ``snake_case``
  without accents, so "Ubicación ID" and "ubicacion_id" are the same column
* every value is read as a **string** (`dtype=str`, `keep_default_na=False`);
  the record adapters do the typing
* empty files and unsupported formats raise ``ValueError``

Accepts **UploadFile / Path / str / bytes**, so the same call works from the
API, from a worker and from pytest.
"""

from __future__ import annotations

import io
import mimetypes
import re
import unicodedata
from pathlib import Path
from typing import Final, Iterable

import chardet
import pandas as pd
from starlette.datastructures import UploadFile

ENCODINGS: Final[list[str]] = [
    "utf-8",
    "utf-8-sig",
    "utf-16",
    "utf-16-le",
    "utf-16-be",
    "cp1252",
    "iso8859-1",
]

# Header variants seen in spreadsheet dumps of the inventory app, folded to
# the field names the record adapters read.
_ALIASES: Final[dict[str, str]] = {
    "ubicacion": "ubicacion_id",
    "location": "location_id",
    "producto": "producto_id",
    "product": "product_id",
    "sku": "producto_id",
    "conteo": "conteo_id",
    "movimiento": "movimiento_id",
    "transferencia_id": "movimiento_id",
    "stock": "stock_actual",
    "existencia": "stock_actual",
    "status": "estado",
}

_NON_WORD = re.compile(r"[^0-9a-z]+")


# --------------------------------------------------------------------------- #
# public API                                                                  #
# --------------------------------------------------------------------------- #
def read_dataframe(file: UploadFile | str | Path | bytes | bytearray, filename: str = "") -> pd.DataFrame:
    """
    Parameters
    ----------
    file :
        * **UploadFile** – uploaded through the API
        * **str / Path** – a file on disk
        * **bytes / bytearray** – raw content already in memory
    filename :
        Name used to pick the parser when *file* is raw bytes (CSV if empty).

    Returns
    -------
    pandas.DataFrame
        First row taken as header, every cell as **string**.

    Raises
    ------
    ValueError
        - empty file
        - unsupported file type
        - no encoding could decode the CSV
    """
    raw, detected_name = _get_raw_and_name(file)
    filename = filename or detected_name

    if not raw:
        raise ValueError("File is empty")

    mime, _ = mimetypes.guess_type(filename)
    lower_name = filename.lower()

    # ----------------------------- CSV ------------------------------------
    if mime in ("text/csv", None) or lower_name.endswith(".csv"):
        df = _read_csv(raw)

    # ----------------------------- Excel ----------------------------------
    elif lower_name.endswith((".xlsx", ".xls")):
        df = pd.read_excel(io.BytesIO(raw), dtype=str, keep_default_na=False)

    else:
        raise ValueError("Unsupported file type (only .csv/.xlsx/.xls accepted)")

    # ---------------------- column normalisation --------------------------
    df.columns = [normalise_header(c) for c in df.columns.astype(str)]
    df.rename(
        columns={c: _ALIASES[c] for c in df.columns if c in _ALIASES and _ALIASES[c] not in df.columns},
        inplace=True,
    )

    if df.empty:
        raise ValueError("File has no data rows")

    return df


def normalise_header(name: str) -> str:
    """'  Ubicación ID ' -> 'ubicacion_id'"""
    txt = unicodedata.normalize("NFKC", name).replace("\ufeff", "").replace("\u3000", " ")
    # strip accents: decompose, drop combining marks
    txt = "".join(ch for ch in unicodedata.normalize("NFKD", txt) if not unicodedata.combining(ch))
    return _NON_WORD.sub("_", txt.strip().lower()).strip("_")


__all__ = ["read_dataframe", "normalise_header"]


# --------------------------------------------------------------------------- #
# helpers (private)                                                           #
# --------------------------------------------------------------------------- #
def _read_csv(raw: bytes) -> pd.DataFrame:
    # Many NUL bytes in the first KB usually means UTF-16
    might_be_utf16 = b"\x00" in raw[:1024]
    enc_guess: str = (chardet.detect(raw[:4096]).get("encoding") or "").lower()

    enc_try_order = (
        ["utf-16", "utf-16-le", "utf-16-be"] if might_be_utf16 else []
    ) + [enc_guess] + ENCODINGS

    for enc in _unique(enc_try_order):
        if not enc:
            continue
        try:
            # csv.Sniffer does not cope with UTF-16, force a comma there
            sep_param = None if enc.startswith("utf-8") or enc == "cp1252" else ","
            df = pd.read_csv(
                io.BytesIO(raw),
                encoding=enc,
                dtype=str,
                keep_default_na=False,
                sep=sep_param,
                engine="python",
            )
        except (UnicodeDecodeError, LookupError):
            continue

        # Sniffer failure leaves a single column; retry with common delimiters
        if df.shape[1] == 1:
            for sep in (",", ";", "\t", "|"):
                try:
                    alt = pd.read_csv(
                        io.BytesIO(raw),
                        encoding=enc,
                        dtype=str,
                        keep_default_na=False,
                        sep=sep,
                    )
                except pd.errors.ParserError:
                    continue
                if alt.shape[1] > 1:
                    df = alt
                    break
        return df

    raise ValueError("Cannot decode CSV – unknown encoding")


def _get_raw_and_name(file: UploadFile | str | Path | bytes | bytearray) -> tuple[bytes, str]:
    """
    Convert the accepted inputs into raw bytes + filename.

    * ``UploadFile`` (or anything with ``.file`` and ``.filename``)
    * ``str`` / ``pathlib.Path`` pointing to a file on disk
    * ``bytes`` / ``bytearray`` already in memory
    """
    if isinstance(file, (bytes, bytearray)):
        return bytes(file), ""

    if isinstance(file, (str, Path)):
        p = Path(file)
        return p.read_bytes(), p.name

    if isinstance(file, UploadFile) or (hasattr(file, "file") and hasattr(file, "filename")):
        return file.file.read(), getattr(file, "filename", "") or ""

    raise TypeError(
        "file must be UploadFile | str | Path | bytes | bytearray; "
        f"got {type(file)}"
    )


def _unique(seq: Iterable[str]) -> list[str]:
    """Drop duplicates, keeping order."""
    seen: set[str] = set()
    out: list[str] = []
    for item in seq:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
