from hrdclassify.classifier import RawPrediction, call_hr_status
from hrdclassify.models import VariantCounts
from hrdclassify.rules import UNDETERMINED, apply_decision_rules


def _counts(n_indel=100, n_indel_rep=100, n_sv=100, n_snv=1000) -> VariantCounts:
    return VariantCounts(n_snv=n_snv, n_indel=n_indel, n_indel_rep=n_indel_rep, n_sv=n_sv)


def test_raw_call_thresholds():
    hrd = call_hr_status("s", 0.3, 0.2)
    assert hrd.hr_status == "HRD"
    assert hrd.p_hrd == 0.5
    assert hrd.hrd_type == "BRCA1"

    prof = call_hr_status("s", 0.1, 0.2)
    assert prof.hr_status == "HR-proficient"
    assert prof.hrd_type == "none"

    assert call_hr_status("s", 0.1, 0.7).hrd_type == "BRCA2"


def test_few_indels_cannot_be_determined():
    for p1, p2 in [(0.9, 0.05), (0.01, 0.01)]:
        res = apply_decision_rules(call_hr_status("s", p1, p2), _counts(n_indel=45))
        assert res.hr_status == UNDETERMINED
        assert res.hrd_type == UNDETERMINED
        assert res.remarks == ("<50 indels",)


def test_confident_brca1_call():
    raw = call_hr_status("s", 0.7, 0.1)
    assert abs(raw.p_hrd - 0.8) < 1e-12
    res = apply_decision_rules(raw, _counts(n_indel=60, n_indel_rep=10000, n_sv=40))
    assert res.hr_status == "HRD"
    assert res.hrd_type == "BRCA1"
    assert res.remarks == ()


def test_msi_cannot_be_determined():
    res = apply_decision_rules(call_hr_status("s", 0.7, 0.1), _counts(n_indel=60, n_indel_rep=15000))
    assert res.hr_status == UNDETERMINED
    assert res.remarks == ("Has MSI (>14000 indel.rep)",)


def test_both_gates_are_reported():
    res = apply_decision_rules(call_hr_status("s", 0.7, 0.1), _counts(n_indel=20, n_indel_rep=15000))
    assert res.hr_status == UNDETERMINED
    assert res.remarks == ("<50 indels", "Has MSI (>14000 indel.rep)")


def test_few_svs_only_affect_hrd_type():
    res = apply_decision_rules(call_hr_status("s", 0.1, 0.8), _counts(n_sv=29))
    assert res.hr_status == "HRD"
    assert res.hrd_type == UNDETERMINED
    assert res.remarks == ("<30 SVs",)

    prof = apply_decision_rules(call_hr_status("s", 0.1, 0.1), _counts(n_sv=0))
    assert prof.hr_status == "HR-proficient"
    assert prof.hrd_type == "none"
    assert prof.remarks == ()


def test_probabilities_pass_through():
    raw = RawPrediction(sample="s", p_hrd=0.93, p_BRCA1=0.9, p_BRCA2=0.03, hr_status="HRD", hrd_type="BRCA1")
    res = apply_decision_rules(raw, _counts(n_indel=1, n_sv=1))
    assert (res.p_hrd, res.p_BRCA1, res.p_BRCA2) == (0.93, 0.9, 0.03)
    assert res.to_row()["remarks"] == "<50 indels"


def test_thresholds_are_exclusive():
    res = apply_decision_rules(call_hr_status("s", 0.7, 0.1), _counts(n_indel=50, n_indel_rep=14000, n_sv=30))
    assert res.hr_status == "HRD"
    assert res.hrd_type == "BRCA1"
    assert res.remarks == ()

    assert apply_decision_rules(call_hr_status("s", 0.7, 0.1), _counts(n_indel=49)).remarks == ("<50 indels",)
    assert apply_decision_rules(call_hr_status("s", 0.7, 0.1), _counts(n_indel_rep=14001)).remarks == (
        "Has MSI (>14000 indel.rep)",
    )
    assert apply_decision_rules(call_hr_status("s", 0.7, 0.1), _counts(n_sv=29)).remarks == ("<30 SVs",)
