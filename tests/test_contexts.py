import pytest

from hrdclassify.config import ExtractionConfig
from hrdclassify.contexts import (
    FEATURE_NAMES,
    INDEL_CONTEXTS,
    SCHEMA_VERSION,
    classify_indel,
    count_evidence,
    extract_contexts,
    extract_many,
    snv_context,
    sv_context,
)
from hrdclassify.genome import InMemorySequenceLookup
from hrdclassify.models import SampleVariants, StructuralVariant, VariantRecord

# Each case: (reference, pos, ref, alt, expected context)
INDEL_CASES = [
    ("GTACACACGTTTTTTTTTTT", 2, "TAC", "T", "del.rep"),
    ("GAAAATCCCC", 1, "GA", "G", "del.rep"),
    ("TTTTACATGCAAATTTTTTTT", 5, "ACATG", "A", "del.mh.bimh.2.5"),
    ("TTTTACTGCAATTTTTT", 5, "ACTG", "A", "del.mh.bimh.1"),
    ("TTTTACGTTTTT", 5, "ACG", "A", "del.none"),
    ("TTTTACAGTTTT", 5, "A", "ACA", "ins.rep"),
    ("TTTTGCGTTTT", 5, "G", "GCT", "ins.mh"),
    ("TTTTGTTTT", 5, "G", "GAC", "ins.none"),
]


def _lookup(seq: str) -> InMemorySequenceLookup:
    return InMemorySequenceLookup({"chr1": seq})


@pytest.mark.parametrize("seq,pos,ref,alt,expected", INDEL_CASES)
def test_classify_indel(seq, pos, ref, alt, expected):
    rec = VariantRecord(chrom="chr1", pos=pos, ref=ref, alt=alt)
    assert classify_indel(rec, _lookup(seq)).context == expected


def test_microhomology_length_reported():
    rec = VariantRecord(chrom="chr1", pos=5, ref="ACATG", alt="A")
    ctx = classify_indel(rec, _lookup("TTTTACATGCAAATTTTTTTT"))
    assert ctx.mh_len == 2
    assert ctx.repeat_copies == 0


def test_long_indels_skip_flank_scan():
    rec = VariantRecord(chrom="chr1", pos=2, ref="TAC", alt="T")
    ctx = classify_indel(rec, _lookup("GTACACACGTTTTTTTTTTT"), max_indel_len=1)
    assert ctx.context == "del.none"


def test_snv_context_folds_to_pyrimidine():
    assert snv_context(VariantRecord("chr1", 1, "G", "A")) == "C>T"
    assert snv_context(VariantRecord("chr1", 1, "A", "G")) == "T>C"
    assert snv_context(VariantRecord("chr1", 1, "C", "A")) == "C>A"
    assert snv_context(VariantRecord("chr1", 1, "T", "G")) == "T>G"


def test_sv_length_bins():
    assert sv_context(StructuralVariant("DUP", 999)) == "DUP_0e00_1e03_bp"
    assert sv_context(StructuralVariant("DUP", 1000)) == "DUP_1e03_1e04_bp"
    assert sv_context(StructuralVariant("DUP", 99_999)) == "DUP_1e04_1e05_bp"
    assert sv_context(StructuralVariant("DEL", -250_000)) == "DEL_1e05_1e06_bp"
    assert sv_context(StructuralVariant("INV", 10_000_000)) == "INV_1e07_Inf_bp"


def test_translocation_ignores_length():
    sv = StructuralVariant("TRA", 5_000)
    assert sv.sv_len is None
    assert sv_context(sv) == "TRA"

    vec = extract_contexts(SampleVariants("s", svs=(sv,)), _lookup("A"))
    assert vec["TRA"] == 1
    assert all(vec[n] == 0 for n in FEATURE_NAMES if n.startswith(("DUP_", "DEL_", "INV_")))


def test_length_required_for_binned_types():
    with pytest.raises(ValueError):
        sv_context(StructuralVariant("DUP", None))


def test_zero_variants_gives_full_zero_vector():
    vec = extract_contexts(SampleVariants("empty"), _lookup("A"))
    assert len(vec) == len(FEATURE_NAMES)
    assert vec.names == FEATURE_NAMES
    assert vec.schema_version == SCHEMA_VERSION
    assert sum(vec.counts) == 0


def _mixed_sample(name: str = "s1") -> tuple[SampleVariants, InMemorySequenceLookup]:
    # Concatenate the indel references on separate contigs.
    seqs = {f"c{i}": case[0] for i, case in enumerate(INDEL_CASES)}
    indels = tuple(
        VariantRecord(chrom=f"c{i}", pos=pos, ref=ref, alt=alt)
        for i, (_, pos, ref, alt, _) in enumerate(INDEL_CASES)
    )
    snvs = (VariantRecord("c0", 1, "G", "A"), VariantRecord("c0", 3, "A", "C"))
    svs = (StructuralVariant("DUP", 15_000), StructuralVariant("TRA", None), StructuralVariant("DEL", 400))
    return SampleVariants(name, snvs=snvs, indels=indels, svs=svs), InMemorySequenceLookup(seqs)


def test_microhomology_counts_match_detected_microhomology():
    sample, lookup = _mixed_sample()
    vec = extract_contexts(sample, lookup)

    with_mh = [r for r in sample.indels if classify_indel(r, lookup).context in ("del.mh.bimh.1", "del.mh.bimh.2.5")]
    assert vec["del.mh.bimh.1"] + vec["del.mh.bimh.2.5"] == len(with_mh) == 2
    assert vec.total(INDEL_CONTEXTS) == len(sample.indels)


def test_extraction_is_idempotent():
    sample, lookup = _mixed_sample()
    first = extract_contexts(sample, lookup)
    second = extract_contexts(sample, lookup)
    assert first == second
    assert first.as_array().tobytes() == second.as_array().tobytes()


def test_extract_many_keeps_input_order():
    samples = []
    lookup = None
    for name in ["a", "b", "c", "d"]:
        s, lookup = _mixed_sample(name)
        samples.append(s)
    rows = extract_many(samples, lookup, ExtractionConfig(), n_jobs=3)
    assert [r.sample for r in rows] == ["a", "b", "c", "d"]
    assert len({r.vector for r in rows}) == 1


def test_count_evidence():
    sample, lookup = _mixed_sample()
    counts = count_evidence(extract_contexts(sample, lookup))
    assert counts.n_snv == 2
    assert counts.n_indel == len(INDEL_CASES)
    assert counts.n_indel_rep == 3
    assert counts.n_sv == 3
