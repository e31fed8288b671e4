from __future__ import annotations


class HrdClassifyError(Exception):
    """Base class for errors raised by hrdclassify."""


class SchemaError(HrdClassifyError, ValueError):
    """Input table is malformed or lacks required columns."""


class SchemaMismatchError(HrdClassifyError):
    """Feature schema does not match the schema expected by the model."""


class UnsupportedSvTypeError(HrdClassifyError, ValueError):
    """SV type outside DEL/DUP/INV/TRA."""


class ModelFormatError(HrdClassifyError):
    """Model artifact is missing fields or is internally inconsistent."""
