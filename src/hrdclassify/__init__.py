"""HRDClassify: mutation-context features and HRD prediction from somatic variants.

Public API is intentionally small; most users should use the CLI:

    hrdclassify run --sample-sheet samples.tsv --model model.json --ref genome.fa --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
