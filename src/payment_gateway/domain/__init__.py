"""Pure domain helpers (validation, amounts, signatures, ids)."""
