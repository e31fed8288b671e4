"""Evidence rules applied on top of the raw classifier call.

Thresholds are fixed for the trained model and are not tuning parameters.
"""

from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from .classifier import RawPrediction
from .models import BootstrapQuantiles, PredictionResult, VariantCounts

logger = logging.getLogger(__name__)

MIN_INDELS = 50
MAX_INDEL_REP = 14000
MIN_SVS = 30

UNDETERMINED = "cannot_be_determined"

REMARK_FEW_INDELS = f"<{MIN_INDELS} indels"
REMARK_MSI = f"Has MSI (>{MAX_INDEL_REP} indel.rep)"
REMARK_FEW_SVS = f"<{MIN_SVS} SVs"


def apply_decision_rules(
    raw: RawPrediction,
    counts: VariantCounts,
    *,
    bootstrap: Optional[Mapping[str, BootstrapQuantiles]] = None,
) -> PredictionResult:
    """Downgrade the call when the sample lacks the evidence the model relies on.

    Probabilities pass through unchanged; only ``hr_status``/``hrd_type`` and the
    remarks are affected.
    """
    hr_status = raw.hr_status
    hrd_type = raw.hrd_type
    remarks: List[str] = []

    if counts.n_indel < MIN_INDELS:
        hr_status = UNDETERMINED
        remarks.append(REMARK_FEW_INDELS)

    if counts.n_indel_rep > MAX_INDEL_REP:
        hr_status = UNDETERMINED
        remarks.append(REMARK_MSI)

    if hr_status == UNDETERMINED:
        hrd_type = UNDETERMINED
    elif hr_status == "HRD" and counts.n_sv < MIN_SVS:
        hrd_type = UNDETERMINED
        remarks.append(REMARK_FEW_SVS)

    if remarks:
        logger.info("%s: %s", raw.sample, "; ".join(remarks))

    return PredictionResult(
        sample=raw.sample,
        p_hrd=raw.p_hrd,
        p_BRCA1=raw.p_BRCA1,
        p_BRCA2=raw.p_BRCA2,
        hr_status=hr_status,
        hrd_type=hrd_type,
        remarks=tuple(remarks),
        bootstrap=bootstrap,
    )
