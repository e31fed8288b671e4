"""Variant loading: VCFs via pysam, or position-based tab-delimited tables."""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pysam

from .config import ExtractionConfig
from .errors import SchemaError, UnsupportedSvTypeError
from .models import SV_TYPES, SampleVariants, StructuralVariant, VariantRecord
from .utils import open_textmaybe_gzip
from .validation import check_vcf_index

logger = logging.getLogger(__name__)

_NA = {"", "NA", "NaN", "nan", "."}
_VCF_SUFFIXES = (".vcf", ".vcf.gz", ".bcf")
_ALLELE_RE = re.compile(r"^[ACGTNacgtn]+$")

# Breakend ALT: t[p[, t]p], ]p]t, [p[t
_BND_RE = re.compile(r"^(?P<pre>[A-Za-z.]*)(?P<b1>[\[\]])(?P<chrom>[^\[\]:]+):(?P<pos>\d+)(?P<b2>[\[\]])(?P<post>[A-Za-z.]*)$")


def is_vcf_path(path: str | Path) -> bool:
    return str(path).endswith(_VCF_SUFFIXES)


def _new_stats(keys: Iterable[str]) -> Dict[str, int]:
    return {k: 0 for k in keys}


def _is_pass(rec: pysam.VariantRecord) -> bool:
    # In pysam, rec.filter.keys() returns set of filter names; PASS may be absent when empty.
    filt = list(rec.filter.keys())
    return len(filt) == 0 or (len(filt) == 1 and filt[0] == "PASS")


def _iter_vcf(vcf: pysam.VariantFile) -> Iterable[pysam.VariantRecord]:
    # VCF.fetch() requires an index for bgzipped VCFs; fall back to sequential iteration.
    try:
        return vcf.fetch()
    except (ValueError, OSError):
        return vcf


# -----------------
# Tables
# -----------------


def _parse_int(value: str, *, path: str | Path, lineno: int, column: str) -> int:
    try:
        number = float(value)
    except ValueError:
        number = float("nan")
    if not number.is_integer():
        raise SchemaError(f"{path}:{lineno}: column {column} must be an integer, got {value!r}")
    return int(number)


def _is_number_or_na(value: str) -> bool:
    value = value.strip()
    if value in _NA:
        return True
    try:
        float(value)
    except ValueError:
        return False
    return True


def _small_variant_header(fields: List[str]) -> bool:
    # A header has neither a numeric position nor allele-like ref/alt columns.
    pos = fields[1] if len(fields) > 1 else ""
    alleles = [f.strip() for f in fields[2:4]]
    return not _is_number_or_na(pos) and not any(_ALLELE_RE.match(a) for a in alleles)


def _sv_header(fields: List[str]) -> bool:
    sv_type = fields[0].strip().upper()
    if sv_type in SV_TYPES or sv_type == "INS":
        return False
    return len(fields) > 1 and not _is_number_or_na(fields[1])


def _iter_table_rows(
    path: str | Path,
    n_cols: int,
    kind: str,
    is_header: Callable[[List[str]], bool],
) -> Iterable[Tuple[int, List[str]]]:
    with open_textmaybe_gzip(path, "rt") as fh:
        reader = csv.reader(fh, delimiter="\t")
        first = True
        for lineno, fields in enumerate(reader, start=1):
            if not fields or fields[0].startswith("#"):
                continue
            if first:
                first = False
                if is_header(fields):
                    logger.debug("%s: skipping header row %s", path, fields)
                    continue
            if len(fields) < n_cols:
                raise SchemaError(
                    f"{path}:{lineno}: {kind} table needs {n_cols} columns "
                    f"(position matters, names are ignored), found {len(fields)}"
                )
            yield lineno, [f.strip() for f in fields[:n_cols]]


def load_small_variant_table(path: str | Path) -> List[VariantRecord]:
    """Read SNVs/indels from columns (chrom, pos, ref, alt)."""
    out: List[VariantRecord] = []
    for lineno, (chrom, pos, ref, alt) in _iter_table_rows(path, 4, "SNV/indel", _small_variant_header):
        try:
            out.append(
                VariantRecord(
                    chrom=chrom,
                    pos=_parse_int(pos, path=path, lineno=lineno, column="pos"),
                    ref=ref.upper(),
                    alt=alt.upper(),
                )
            )
        except SchemaError:
            raise
        except ValueError as e:
            raise SchemaError(f"{path}:{lineno}: {e}") from None
    return out


def load_sv_table(path: str | Path) -> List[StructuralVariant]:
    """Read SVs from columns (sv_type, sv_len); sv_len may be NA for TRA."""
    out: List[StructuralVariant] = []
    for lineno, (sv_type, sv_len) in _iter_table_rows(path, 2, "SV", _sv_header):
        length: Optional[int] = None
        if sv_len not in _NA:
            length = _parse_int(sv_len, path=path, lineno=lineno, column="sv_len")
        try:
            sv = StructuralVariant(sv_type=sv_type, sv_len=length)
        except UnsupportedSvTypeError as e:
            raise UnsupportedSvTypeError(f"{path}:{lineno}: {e}") from None
        if sv.sv_type != "TRA" and sv.sv_len is None:
            raise SchemaError(f"{path}:{lineno}: {sv.sv_type} needs sv_len")
        out.append(sv)
    return out


def split_small_variants(
    records: Iterable[VariantRecord],
) -> Tuple[List[VariantRecord], List[VariantRecord], Dict[str, int]]:
    """Separate SNVs and simple indels; MNVs and complex alleles are skipped."""
    stats = _new_stats(["snv", "indel", "skipped_mnv", "skipped_complex", "skipped_n_base"])
    snvs: List[VariantRecord] = []
    indels: List[VariantRecord] = []
    for rec in records:
        if "N" in rec.ref or "N" in rec.alt:
            stats["skipped_n_base"] += 1
        elif rec.is_snv:
            snvs.append(rec)
            stats["snv"] += 1
        elif rec.is_indel:
            indels.append(rec)
            stats["indel"] += 1
        elif len(rec.ref) == len(rec.alt):
            stats["skipped_mnv"] += 1
        else:
            stats["skipped_complex"] += 1
    return snvs, indels, stats


# -----------------
# VCFs
# -----------------


def load_small_variants_vcf(
    vcf_path: str,
    *,
    require_pass: bool = True,
) -> Tuple[List[VariantRecord], Dict[str, int]]:
    """Load SNV and indel records from a somatic VCF; multi-allelic sites are split.

    Returns
    -------
    records:
        VariantRecord per (site, ALT allele), in file order.
    stats:
        Simple counters about records kept/skipped.
    """
    check_vcf_index(vcf_path)
    stats = _new_stats(["records_total", "records_pass", "skipped_filter", "skipped_symbolic"])
    records: List[VariantRecord] = []

    with pysam.VariantFile(vcf_path) as vcf:
        for rec in _iter_vcf(vcf):
            stats["records_total"] += 1
            if require_pass and not _is_pass(rec):
                stats["skipped_filter"] += 1
                continue
            stats["records_pass"] += 1

            for alt in rec.alts or ():
                if alt.startswith("<") or "[" in alt or "]" in alt or alt in ("*", "."):
                    stats["skipped_symbolic"] += 1
                    continue
                records.append(
                    VariantRecord(chrom=str(rec.contig), pos=int(rec.pos), ref=rec.ref.upper(), alt=alt.upper())
                )

    logger.info(
        "%s: %d of %d records passed filters", vcf_path, stats["records_pass"], stats["records_total"]
    )
    return records, stats


def _bnd_type(chrom: str, pos: int, alt: str) -> Optional[Tuple[str, Optional[int]]]:
    """Simple SV type from breakend notation, or None for the mate record / single breakends.

    Each breakend pair is reported once, from the record sorting first by (chrom, pos).
    """
    m = _BND_RE.match(alt)
    if m is None:
        return None
    chrom2, pos2 = m.group("chrom"), int(m.group("pos"))
    if (chrom, pos) >= (chrom2, pos2):
        return None
    if chrom2 != chrom:
        return "TRA", None
    joined_after = bool(m.group("pre"))
    bracket = m.group("b1")
    if joined_after and bracket == "[":
        sv_type = "DEL"
    elif not joined_after and bracket == "]":
        sv_type = "DUP"
    else:
        sv_type = "INV"
    return sv_type, pos2 - pos


def _info_len(rec: pysam.VariantRecord) -> Optional[int]:
    svlen = rec.info.get("SVLEN")
    if isinstance(svlen, (list, tuple)):
        svlen = svlen[0] if svlen else None
    if svlen is not None:
        return abs(int(svlen))
    if rec.stop is not None and rec.stop > rec.pos:
        return int(rec.stop) - int(rec.pos)
    return None


def load_sv_vcf(
    vcf_path: str,
    *,
    sv_caller: str = "manta",
    require_pass: bool = True,
) -> Tuple[List[StructuralVariant], Dict[str, int]]:
    """Load structural variants from a Manta- or GRIDSS-style VCF.

    Manta records carry SVTYPE; breakends (BND) between contigs become TRA and
    intrachromosomal breakends are typed from their orientation. GRIDSS records are
    typed entirely from breakend notation. Insertions are skipped; any other SVTYPE
    outside DEL/DUP/INV/BND/TRA is an error.
    """
    if sv_caller not in ("manta", "gridss"):
        raise ValueError(f"Unknown SV caller dialect: {sv_caller}")
    check_vcf_index(vcf_path)

    stats = _new_stats(
        [
            "records_total",
            "records_pass",
            "skipped_filter",
            "skipped_mate",
            "skipped_ins",
            "skipped_single_breakend",
            "svs_kept",
        ]
    )
    svs: List[StructuralVariant] = []

    with pysam.VariantFile(vcf_path) as vcf:
        for rec in _iter_vcf(vcf):
            stats["records_total"] += 1
            if require_pass and not _is_pass(rec):
                stats["skipped_filter"] += 1
                continue
            stats["records_pass"] += 1

            chrom, pos = str(rec.contig), int(rec.pos)
            alt = (rec.alts or ("",))[0]

            svtype_raw = rec.info.get("SVTYPE") if sv_caller == "manta" else "BND"
            if svtype_raw is None:
                raise UnsupportedSvTypeError(f"{vcf_path}: record at {chrom}:{pos} has no SVTYPE")
            svtype = str(svtype_raw).split(":")[0].upper()

            if svtype == "INS":
                stats["skipped_ins"] += 1
                continue
            if svtype == "BND":
                if _BND_RE.match(alt) is None:
                    stats["skipped_single_breakend"] += 1
                    continue
                typed = _bnd_type(chrom, pos, alt)
                if typed is None:
                    stats["skipped_mate"] += 1
                    continue
                sv = StructuralVariant(sv_type=typed[0], sv_len=typed[1])
            elif svtype in SV_TYPES:
                length = _info_len(rec)
                if length is None and svtype != "TRA":
                    raise ValueError(f"{vcf_path}: {svtype} at {chrom}:{pos} has neither SVLEN nor END")
                sv = StructuralVariant(sv_type=svtype, sv_len=length)
            else:
                raise UnsupportedSvTypeError(
                    f"{vcf_path}: unsupported SVTYPE {svtype_raw!r} at {chrom}:{pos}"
                )
            svs.append(sv)

    if stats["skipped_ins"]:
        logger.warning(
            "%s: skipped %d INS calls; insertions have no SV context category",
            vcf_path,
            stats["skipped_ins"],
        )
    stats["svs_kept"] = len(svs)
    logger.info("%s: kept %d SVs (%s caller rules)", vcf_path, len(svs), sv_caller)
    return svs, stats


# -----------------
# Samples
# -----------------


@dataclass(frozen=True)
class SampleInput:
    sample: str
    small_variants: Optional[str]
    structural_variants: Optional[str]


def load_sample_variants(
    item: SampleInput,
    config: ExtractionConfig = ExtractionConfig(),
) -> Tuple[SampleVariants, Dict[str, Dict[str, int]]]:
    """Load one sample's SNVs, indels and SVs from VCFs or tables."""
    stats: Dict[str, Dict[str, int]] = {}
    snvs: List[VariantRecord] = []
    indels: List[VariantRecord] = []
    svs: List[StructuralVariant] = []

    if item.small_variants:
        if is_vcf_path(item.small_variants):
            records, stats["small_vcf"] = load_small_variants_vcf(
                item.small_variants, require_pass=config.require_pass
            )
        else:
            records = load_small_variant_table(item.small_variants)
        snvs, indels, stats["small_variants"] = split_small_variants(records)

    if item.structural_variants:
        if is_vcf_path(item.structural_variants):
            svs, stats["sv_vcf"] = load_sv_vcf(
                item.structural_variants,
                sv_caller=config.sv_caller,
                require_pass=config.require_pass,
            )
        else:
            svs = load_sv_table(item.structural_variants)

    variants = SampleVariants(sample=item.sample, snvs=tuple(snvs), indels=tuple(indels), svs=tuple(svs))
    return variants, stats


def load_sample_sheet(path: str | Path) -> List[SampleInput]:
    """Read a sample sheet with columns (sample, snv_indel_path, sv_path).

    Relative paths are resolved against the sheet's directory. Empty or NA paths mean
    the sample has no calls of that kind.
    """
    base = Path(path).resolve().parent
    items: List[SampleInput] = []

    def _resolve(p: str) -> Optional[str]:
        if p in _NA:
            return None
        q = Path(p).expanduser()
        return str(q if q.is_absolute() else base / q)

    with open(path, "rt", encoding="utf-8") as fh:
        reader = csv.reader(fh, delimiter="\t")
        first = True
        for lineno, fields in enumerate(reader, start=1):
            if not fields or fields[0].startswith("#"):
                continue
            if first:
                first = False
                if fields[0].strip().lower() == "sample":
                    continue
            if len(fields) < 3:
                raise SchemaError(
                    f"{path}:{lineno}: sample sheet needs 3 columns (sample, snv_indel, sv), found {len(fields)}"
                )
            items.append(
                SampleInput(
                    sample=fields[0].strip(),
                    small_variants=_resolve(fields[1].strip()),
                    structural_variants=_resolve(fields[2].strip()),
                )
            )

    names = [i.sample for i in items]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise SchemaError(f"{path}: duplicate sample names {dupes}")
    if not items:
        raise SchemaError(f"{path}: sample sheet lists no samples")
    return items
