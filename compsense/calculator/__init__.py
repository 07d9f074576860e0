# ==============================================================================
# compsense/calculator/__init__.py
# ------------------------------------------------------------------------------
# The compensation computation engine: pure functions over in-memory records.
# ==============================================================================
